"""Snapshot sources behind one ``acquire()`` call."""

import logging
from datetime import timedelta
from typing import Callable

from codex_tracker.api import RemoteUsageClient
from codex_tracker.errors import NotConfiguredError, TrackerError, ValidationError
from codex_tracker.models import Acquisition
from codex_tracker.sessions import LogScanner

log = logging.getLogger(__name__)

SESSION_RECENCY = timedelta(hours=12)


class SnapshotSource:
    """Something that can produce a usage snapshot on demand."""

    # Status shown on forced attempts that find nothing to report.
    waiting_status = "Waiting for data"

    def acquire(self) -> Acquisition:
        raise NotImplementedError


class RemoteSnapshotSource(SnapshotSource):
    """Pings the OpenAI API with the configured key and model."""

    waiting_status = "Waiting for API key"

    def __init__(
        self,
        client: RemoteUsageClient,
        credentials: Callable[[], tuple[str, str]],
    ) -> None:
        self.client = client
        self._credentials = credentials

    def acquire(self) -> Acquisition:
        api_key, model = self._credentials()
        api_key, model = api_key.strip(), model.strip()
        if not api_key:
            return Acquisition.not_configured()
        if not model:
            return Acquisition.failed(ValidationError("Model cannot be empty."))

        try:
            return Acquisition.found(self.client.fetch(api_key, model))
        except NotConfiguredError:
            return Acquisition.not_configured()
        except TrackerError as e:
            log.warning("Remote ping failed: %s", e)
            return Acquisition.failed(e)


class SessionSnapshotSource(SnapshotSource):
    """Reads the latest rate limits Codex wrote to its session logs."""

    waiting_status = "Waiting for Codex session"

    def __init__(self, scanner: LogScanner, max_age: timedelta | None = SESSION_RECENCY) -> None:
        self.scanner = scanner
        self.max_age = max_age

    def acquire(self) -> Acquisition:
        try:
            snapshot = self.scanner.scan(self.max_age)
        except TrackerError as e:
            log.warning("Session scan failed: %s", e)
            return Acquisition.failed(e)
        if snapshot is None:
            return Acquisition.not_found()
        return Acquisition.found(snapshot)
