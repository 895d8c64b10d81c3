"""Shared data types: snapshots, modes and published engine state."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from codex_tracker.errors import TrackerError


class PollMode(str, Enum):
    REMOTE_API = "remote_api"
    LOCAL_SESSION = "local_session"

    @classmethod
    def parse(cls, value: str | None) -> "PollMode | None":
        try:
            return cls(value)
        except ValueError:
            return None


class Trend(str, Enum):
    RISING = "rising"
    FALLING = "falling"
    STEADY = "steady"

    @property
    def symbol(self) -> str:
        return {"rising": "↑", "falling": "↓", "steady": "→"}[self.value]


def _used_percent(limit: int | None, remaining: int | None) -> float | None:
    if limit is None or remaining is None or limit <= 0:
        return None
    return (limit - remaining) / limit * 100


@dataclass(frozen=True)
class UsageSnapshot:
    """Normalized quota usage at one point in time.

    Remote pings fill the ``requests_*``/``tokens_*`` fields, local session
    scans fill the ``primary_*``/``secondary_*`` windows. A single snapshot
    never mixes the two.
    """

    fetched_at: datetime
    requests_limit: int | None = None
    requests_remaining: int | None = None
    requests_reset_label: str | None = None
    tokens_limit: int | None = None
    tokens_remaining: int | None = None
    tokens_reset_label: str | None = None
    request_tokens_cost: int | None = None
    primary_used_percent: float | None = None
    primary_window_minutes: int | None = None
    primary_reset_at: datetime | None = None
    secondary_used_percent: float | None = None
    secondary_window_minutes: int | None = None
    secondary_reset_at: datetime | None = None

    @property
    def requests_used_percent(self) -> float | None:
        return _used_percent(self.requests_limit, self.requests_remaining)

    @property
    def tokens_used_percent(self) -> float | None:
        return _used_percent(self.tokens_limit, self.tokens_remaining)

    @property
    def is_session(self) -> bool:
        return any(
            v is not None
            for v in (
                self.primary_used_percent,
                self.primary_window_minutes,
                self.primary_reset_at,
                self.secondary_used_percent,
                self.secondary_window_minutes,
                self.secondary_reset_at,
            )
        )

    @property
    def scheduling_percent(self) -> float | None:
        """Usage level that drives the adaptive poll interval.

        Session snapshots use the short window; remote snapshots use the
        higher of the request and token quota usage.
        """
        if self.is_session:
            return self.primary_used_percent
        known = [p for p in (self.requests_used_percent, self.tokens_used_percent) if p is not None]
        return max(known) if known else None


class Outcome(str, Enum):
    SNAPSHOT = "snapshot"
    NOT_FOUND = "not_found"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


@dataclass(frozen=True)
class Acquisition:
    """Tagged result of one ``SnapshotSource.acquire()`` call."""

    outcome: Outcome
    snapshot: UsageSnapshot | None = None
    error: TrackerError | None = None

    @classmethod
    def found(cls, snapshot: UsageSnapshot) -> "Acquisition":
        return cls(Outcome.SNAPSHOT, snapshot=snapshot)

    @classmethod
    def not_found(cls) -> "Acquisition":
        return cls(Outcome.NOT_FOUND)

    @classmethod
    def not_configured(cls) -> "Acquisition":
        return cls(Outcome.NOT_CONFIGURED)

    @classmethod
    def failed(cls, error: TrackerError) -> "Acquisition":
        return cls(Outcome.FAILED, error=error)


@dataclass(frozen=True)
class EngineState:
    """Everything the presentation layer reads, published as one object."""

    mode: PollMode
    snapshot: UsageSnapshot | None = None
    is_polling: bool = False
    status_text: str = "Not refreshed yet"
    error_text: str | None = None
    burn_trend: Trend = Trend.STEADY
    burn_percent: float | None = None
    refresh_interval: int = 60
    next_poll_at: datetime | None = None
    account_email: str | None = None
    codex_login_available: bool = False
