"""System tray icon showing the published engine state."""

import logging
import threading
from typing import TYPE_CHECKING

import pystray

from codex_tracker.config import SUPPORTED_INTERVALS, Settings
from codex_tracker.icon import create_split_icon, icon_percents, tooltip_for
from codex_tracker.models import EngineState, PollMode

if TYPE_CHECKING:
    from codex_tracker.engine import PollEngine

log = logging.getLogger(__name__)

MODE_LABELS = {
    PollMode.REMOTE_API: "Use API key",
    PollMode.LOCAL_SESSION: "Use Codex login",
}


class TrayManager:
    def __init__(self, engine: "PollEngine", settings: Settings) -> None:
        self._engine = engine
        self._settings = settings
        self._icon: pystray.Icon | None = None
        self._ready = threading.Event()

    def _build_menu(self) -> pystray.Menu:
        mode_items = [
            pystray.MenuItem(
                label,
                self._on_mode(mode),
                checked=lambda item, mode=mode: self._engine.state.mode is mode,
                radio=True,
            )
            for mode, label in MODE_LABELS.items()
        ]
        interval_items = [
            pystray.MenuItem(
                f"Every {seconds // 60} min",
                self._on_interval(seconds),
                checked=lambda item, seconds=seconds: self._engine.state.refresh_interval == seconds,
                radio=True,
            )
            for seconds in SUPPORTED_INTERVALS
        ]
        return pystray.Menu(
            pystray.MenuItem("Refresh", self._on_refresh, default=True),
            pystray.Menu.SEPARATOR,
            *mode_items,
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Refresh interval", pystray.Menu(*interval_items)),
            pystray.Menu.SEPARATOR,
            pystray.MenuItem("Exit", self._on_exit),
        )

    def run(self) -> None:
        """Block in the tray loop until Exit is chosen."""
        self._icon = pystray.Icon(
            "codex_tracker",
            icon=create_split_icon(),
            title="Codex Tracker",
            menu=self._build_menu(),
        )
        self._engine.subscribe(self.update)
        self._icon.run(setup=self._on_ready)

    def _on_ready(self, icon: pystray.Icon) -> None:
        icon.visible = True
        self._ready.set()
        self.update(self._engine.state)
        self._engine.start()

    def update(self, state: EngineState) -> None:
        if not self._ready.is_set() or self._icon is None:
            return
        self._icon.icon = create_split_icon(*icon_percents(state.snapshot))
        self._icon.title = tooltip_for(state)

    def _on_refresh(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        if not self._engine.request_refresh(force=True):
            log.info("Refresh already in progress")

    def _on_mode(self, mode: PollMode):
        def handler(icon: pystray.Icon, item: pystray.MenuItem) -> None:
            self._engine.request_mode(mode)
            self._settings.poll_mode = mode.value
            self._settings.save()

        return handler

    def _on_interval(self, seconds: int):
        def handler(icon: pystray.Icon, item: pystray.MenuItem) -> None:
            self._engine.request_refresh_interval(seconds)
            self._settings.refresh_interval = seconds
            self._settings.save()

        return handler

    def _on_exit(self, icon: pystray.Icon, item: pystray.MenuItem) -> None:
        self._engine.stop()
        icon.stop()
