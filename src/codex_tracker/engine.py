"""Poll engine.

Owns the current mode, the retained snapshot and the scheduling state, and
publishes them as one immutable ``EngineState``. At most one poll runs at a
time: a request that arrives while another is in flight is dropped, not
queued.

In the threaded setup (``start()``) a single worker thread performs every
mutation; the tray and the repeating timer only post messages to it.
"""

import logging
import queue
import threading
from dataclasses import replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from codex_tracker.api import RemoteUsageClient
from codex_tracker.codex_auth import load_session
from codex_tracker.config import DEFAULT_MODEL, Settings
from codex_tracker.errors import AuthFileError, HttpError, TrackerError, ValidationError
from codex_tracker.keystore import FileKeyStore, initial_api_key
from codex_tracker.models import Acquisition, EngineState, Outcome, PollMode, Trend
from codex_tracker.scheduler import ALWAYS, AdaptiveScheduler
from codex_tracker.sessions import LogScanner
from codex_tracker.sources import (
    SESSION_RECENCY,
    RemoteSnapshotSource,
    SessionSnapshotSource,
    SnapshotSource,
)
from codex_tracker.trend import TrendTracker

log = logging.getLogger(__name__)

BAD_API_KEY_TEXT = "Incorrect API key. Paste a valid OpenAI API key."

StateListener = Callable[[EngineState], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _clock_time(moment: datetime) -> str:
    return moment.astimezone().strftime("%H:%M:%S")


def error_text_for(error: TrackerError) -> str:
    if isinstance(error, HttpError) and error.is_bad_api_key:
        return BAD_API_KEY_TEXT
    return str(error)


class RepeatingTimer:
    """Calls ``callback`` every ``interval`` seconds until cancelled."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self._callback = callback
        self._cancelled = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="poll-timer", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._cancelled.wait(self.interval):
            try:
                self._callback()
            except Exception:
                log.exception("Timer callback failed")

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()


class _Message(Enum):
    POLL = "poll"
    MODE = "mode"
    INTERVAL = "interval"
    MODEL = "model"
    API_KEY = "api_key"
    STOP = "stop"


class PollEngine:
    def __init__(
        self,
        mode: PollMode | None = None,
        *,
        sources: dict[PollMode, SnapshotSource] | None = None,
        scanner: LogScanner | None = None,
        key_store: FileKeyStore | None = None,
        api_key: str = "",
        model: str = DEFAULT_MODEL,
        refresh_interval: int = 60,
        load_auth: Callable[[], Any] = load_session,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._clock = clock
        self._load_auth = load_auth
        self.scanner = scanner or LogScanner(clock=clock)
        self.key_store = key_store
        self.api_key = api_key.strip()
        self.model = model
        self.scheduler = AdaptiveScheduler(refresh_interval)
        self.trend = TrendTracker()
        self.sources = sources or {
            PollMode.REMOTE_API: RemoteSnapshotSource(RemoteUsageClient(), self.credentials),
            PollMode.LOCAL_SESSION: SessionSnapshotSource(self.scanner),
        }

        email, login_available = self._codex_login()
        if mode is None:
            mode = PollMode.LOCAL_SESSION if login_available else PollMode.REMOTE_API
        self.mode = mode

        self._state = EngineState(
            mode=mode,
            refresh_interval=refresh_interval,
            account_email=email,
            codex_login_available=login_available,
        )
        self._state_lock = threading.Lock()
        self._listeners: list[StateListener] = []

        self._poll_guard = threading.Lock()
        self._queue: "queue.Queue[tuple[_Message, Any]]" = queue.Queue()
        self._worker: threading.Thread | None = None
        self._timer: RepeatingTimer | None = None
        self._stopping = False
        # A POLL message is queued and holds the guard.
        self._poll_queued = False
        # The next cycle runs forced even if its request was not.
        self._pending_force = False

    @classmethod
    def from_settings(cls, settings: Settings, key_store: FileKeyStore, **kwargs: Any) -> "PollEngine":
        return cls(
            PollMode.parse(settings.poll_mode),
            key_store=key_store,
            api_key=initial_api_key(key_store),
            model=settings.model,
            refresh_interval=settings.refresh_interval,
            **kwargs,
        )

    # ── Published state ──────────────────────────────────────────

    @property
    def state(self) -> EngineState:
        with self._state_lock:
            return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def _publish(self, **changes: Any) -> None:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                log.exception("State listener failed")

    def credentials(self) -> tuple[str, str]:
        return self.api_key, self.model

    # ── Polling ──────────────────────────────────────────────────

    def poll(self, force: bool = False) -> bool:
        """Run one poll attempt on the calling thread.

        Returns False when the attempt was dropped (another poll in flight)
        or gated by the scheduler, True when a source was consulted.
        """
        if not self._poll_guard.acquire(blocking=False):
            log.debug("Poll already in flight, dropping request")
            return False
        try:
            return self._run_cycle(force)
        finally:
            self._poll_guard.release()

    def _run_cycle(self, force: bool) -> bool:
        force = force or self._pending_force
        self._pending_force = False
        now = self._clock()
        if not force and not self.scheduler.is_due(now):
            log.debug("Skipping scheduled poll until %s", self.scheduler.next_allowed_at)
            return False

        self._publish(is_polling=True)
        try:
            email, login_available = self._codex_login()
            self._publish(account_email=email, codex_login_available=login_available)

            source = self.sources[self.mode]
            self._apply(source.acquire(), source, force)
        finally:
            self._publish(is_polling=False, next_poll_at=self._next_poll_at())
        return True

    def _apply(self, result: Acquisition, source: SnapshotSource, force: bool) -> None:
        now = self._clock()
        changes: dict[str, Any] = {}

        if result.outcome is Outcome.SNAPSHOT:
            snapshot = result.snapshot
            trend = self.trend.update(snapshot, self.scheduler.base_interval)
            self.scheduler.on_success(snapshot.scheduling_percent, now)
            log.info("Snapshot acquired (%s)", self.mode.value)
            changes.update(
                snapshot=snapshot,
                error_text=None,
                status_text=f"Last checked {_clock_time(snapshot.fetched_at)}",
                burn_trend=trend,
                burn_percent=self.trend.previous_burn_percent,
            )

        elif result.outcome is Outcome.NOT_FOUND:
            log.info("No rate-limit data found")
            self.trend.reset()
            changes.update(snapshot=None, error_text=None, burn_trend=Trend.STEADY, burn_percent=None)
            if force:
                changes["status_text"] = source.waiting_status

        elif result.outcome is Outcome.NOT_CONFIGURED:
            if force:
                changes["status_text"] = source.waiting_status

        else:
            error = result.error
            if isinstance(error, ValidationError):
                changes["error_text"] = str(error)
            else:
                self.trend.reset()
                self.scheduler.on_failure(now)
                changes.update(
                    error_text=error_text_for(error),
                    burn_trend=Trend.STEADY,
                    burn_percent=None,
                )
                if error.discards_snapshot:
                    changes["snapshot"] = None
                if force:
                    changes["status_text"] = f"Last attempt {_clock_time(now)}"

        self._publish(**changes)

    def _codex_login(self) -> tuple[str | None, bool]:
        try:
            email = self._load_auth().email
            has_token = True
        except AuthFileError:
            email = None
            has_token = False
        recent = self.scanner.has_recent_session(SESSION_RECENCY)
        return email, has_token or recent

    def _next_poll_at(self) -> datetime | None:
        next_at = self.scheduler.next_allowed_at
        return None if next_at == ALWAYS else next_at

    # ── Settings ─────────────────────────────────────────────────

    def switch_mode(self, mode: PollMode) -> None:
        log.info("Switching poll mode to %s", mode.value)
        self.mode = mode
        self.trend.reset()
        self.scheduler.reset(self._clock())
        changes: dict[str, Any] = dict(
            mode=mode,
            error_text=None,
            burn_trend=Trend.STEADY,
            burn_percent=None,
            next_poll_at=self._next_poll_at(),
        )
        if mode is PollMode.LOCAL_SESSION:
            changes["status_text"] = SessionSnapshotSource.waiting_status
        self._publish(**changes)
        if not self.poll(force=True) and self._poll_queued:
            self._pending_force = True

    def set_refresh_interval(self, seconds: int) -> None:
        log.info("Refresh interval set to %ss", seconds)
        self.scheduler.set_base_interval(seconds, self._clock())
        if self._timer is not None and not self._timer.cancelled:
            self._timer.cancel()
            self._start_timer()
        self._publish(refresh_interval=seconds, next_poll_at=self._next_poll_at())

    def set_model(self, model: str) -> None:
        self.model = model

    def set_api_key(self, api_key: str) -> None:
        self.api_key = api_key.strip()
        if self.key_store is not None:
            self.key_store.save(self.api_key)

    # ── Worker thread ────────────────────────────────────────────

    def start(self) -> None:
        """Start the worker and the repeating timer, then poll once."""
        self._worker = threading.Thread(target=self._run_worker, name="poll-engine", daemon=True)
        self._worker.start()
        self._start_timer()
        log.info("Poll engine started (%s, every %ss)", self.mode.value, self.scheduler.base_interval)
        self.request_refresh(force=False)

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping = True
        if self._timer is not None:
            self._timer.cancel()
        if self._worker is not None:
            self._queue.put((_Message.STOP, None))
            self._worker.join(timeout)
        log.info("Poll engine stopped")

    def _start_timer(self) -> None:
        self._timer = RepeatingTimer(self.scheduler.base_interval, self._on_tick)
        self._timer.start()

    def _on_tick(self) -> None:
        self.request_refresh(force=False)

    def request_refresh(self, force: bool = True) -> bool:
        """Ask the worker for a poll; dropped if one is already pending or running."""
        if self._stopping:
            return False
        if not self._poll_guard.acquire(blocking=False):
            log.debug("Poll already in flight, dropping request")
            return False
        self._poll_queued = True
        self._queue.put((_Message.POLL, force))
        return True

    def request_mode(self, mode: PollMode) -> None:
        self._post(_Message.MODE, mode)

    def request_refresh_interval(self, seconds: int) -> None:
        self._post(_Message.INTERVAL, seconds)

    def request_model(self, model: str) -> None:
        self._post(_Message.MODEL, model)

    def request_api_key(self, api_key: str) -> None:
        self._post(_Message.API_KEY, api_key)

    def _post(self, kind: _Message, payload: Any) -> None:
        if not self._stopping:
            self._queue.put((kind, payload))

    def _run_worker(self) -> None:
        while True:
            kind, payload = self._queue.get()
            if kind is _Message.STOP:
                break
            try:
                self._handle(kind, payload)
            except Exception:
                log.exception("Engine failed handling %s", kind.value)

    def _handle(self, kind: _Message, payload: Any) -> None:
        if kind is _Message.POLL:
            # The guard was taken by request_refresh().
            self._poll_queued = False
            try:
                self._run_cycle(payload)
            finally:
                self._poll_guard.release()
        elif kind is _Message.MODE:
            self.switch_mode(payload)
        elif kind is _Message.INTERVAL:
            self.set_refresh_interval(payload)
        elif kind is _Message.MODEL:
            self.set_model(payload)
        elif kind is _Message.API_KEY:
            self.set_api_key(payload)
