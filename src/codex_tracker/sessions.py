"""Codex session log scanning.

Codex appends one JSON event per line to ``$CODEX_HOME/sessions/**/*.jsonl``.
``token_count`` events carry the account's rate-limit windows; the most
recent one is the current usage.
"""

import json
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

from codex_tracker.errors import ScanError
from codex_tracker.models import UsageSnapshot

log = logging.getLogger(__name__)

CODEX_HOME = Path(os.environ.get("CODEX_HOME", "~/.codex")).expanduser()
SESSIONS_DIR = CODEX_HOME / "sessions"
RECORD_SUFFIX = ".jsonl"
USAGE_RECORD_TYPE = "token_count"

# Substrings every usage line contains; checked before paying for json.loads.
_TYPE_MARKER = f'"{USAGE_RECORD_TYPE}"'
_RATE_LIMIT_MARKER = '"rate_limits"'


@dataclass(frozen=True)
class SessionFile:
    path: Path
    modified_at: datetime


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _integer(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _epoch(value: Any) -> datetime | None:
    seconds = _number(value)
    if seconds is None:
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _rate_limits(event: Any) -> dict | None:
    if not isinstance(event, dict):
        return None
    payload = event.get("payload")
    if not isinstance(payload, dict) or payload.get("type") != USAGE_RECORD_TYPE:
        return None
    # Older Codex builds nest the limits under "info".
    limits = payload.get("rate_limits")
    if not isinstance(limits, dict):
        info = payload.get("info")
        limits = info.get("rate_limits") if isinstance(info, dict) else None
    return limits if isinstance(limits, dict) else None


def parse_usage_line(line: str, fetched_at: datetime) -> UsageSnapshot | None:
    """Return a snapshot for a ``token_count`` line, or None for anything else."""
    if _TYPE_MARKER not in line or _RATE_LIMIT_MARKER not in line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        return None

    limits = _rate_limits(event)
    if limits is None:
        return None

    primary = limits.get("primary")
    primary = primary if isinstance(primary, dict) else {}
    secondary = limits.get("secondary")
    secondary = secondary if isinstance(secondary, dict) else {}

    return UsageSnapshot(
        fetched_at=fetched_at,
        primary_used_percent=_number(primary.get("used_percent")),
        primary_window_minutes=_integer(primary.get("window_minutes")),
        primary_reset_at=_epoch(primary.get("resets_at")),
        secondary_used_percent=_number(secondary.get("used_percent")),
        secondary_window_minutes=_integer(secondary.get("window_minutes")),
        secondary_reset_at=_epoch(secondary.get("resets_at")),
    )


class LogScanner:
    """Finds the latest rate-limit record in a tree of session files."""

    def __init__(self, root: Path = SESSIONS_DIR, clock: Callable[[], datetime] = _utcnow) -> None:
        self.root = Path(root)
        self._clock = clock

    def session_files(self) -> list[SessionFile]:
        """Session record files under the root, newest first."""
        if not self.root.is_dir():
            raise ScanError(f"Codex sessions folder not found at {self.root}")

        files: list[SessionFile] = []

        def on_error(err: OSError) -> None:
            # Unreadable subdirectories are skipped; an unreadable root is not.
            if err.filename is not None and Path(err.filename) == self.root:
                raise ScanError(f"Could not read {self.root}: {err}") from err
            log.debug("Skipping unreadable directory: %s", err)

        for dirpath, dirnames, filenames in os.walk(self.root, onerror=on_error):
            dirnames[:] = [d for d in dirnames if not d.startswith(".")]
            for name in filenames:
                if name.startswith(".") or not name.endswith(RECORD_SUFFIX):
                    continue
                path = Path(dirpath) / name
                try:
                    if not path.is_file():
                        continue
                    mtime = path.stat().st_mtime
                except OSError as e:
                    raise ScanError(f"Could not read {path}: {e}") from e
                files.append(SessionFile(path, datetime.fromtimestamp(mtime, tz=timezone.utc)))

        files.sort(key=lambda f: f.modified_at, reverse=True)
        return files

    def scan(self, max_age: timedelta | None = None) -> UsageSnapshot | None:
        """Return the newest usage snapshot, or None when no file has one.

        Files are visited newest first. With ``max_age`` the walk stops at the
        first file older than the cutoff; older files are assumed to be older
        still.

        Raises:
            ScanError: the root is not a directory or a file can't be read.
        """
        now = self._clock()
        cutoff = now - max_age if max_age is not None else None

        for session_file in self.session_files():
            if cutoff is not None and session_file.modified_at < cutoff:
                log.debug("Stopping scan at %s (older than %s)", session_file.path, cutoff)
                break
            snapshot = self._parse_latest(session_file.path, now)
            if snapshot is not None:
                log.debug("Found rate limits in %s", session_file.path)
                return snapshot
        return None

    def has_recent_session(self, max_age: timedelta) -> bool:
        try:
            files = self.session_files()
        except ScanError:
            return False
        return bool(files) and files[0].modified_at >= self._clock() - max_age

    def _parse_latest(self, path: Path, fetched_at: datetime) -> UsageSnapshot | None:
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ScanError(f"Could not read {path}: {e}") from e

        for line in reversed(content.splitlines()):
            snapshot = parse_usage_line(line, fetched_at)
            if snapshot is not None:
                return snapshot
        return None
