"""Adaptive poll interval and failure backoff."""

import logging
from datetime import datetime, timedelta, timezone

log = logging.getLogger(__name__)

HIGH_USAGE_PERCENT = 70.0
MEDIUM_USAGE_PERCENT = 40.0
MEDIUM_USAGE_INTERVAL = 120
LOW_USAGE_INTERVAL = 300
BACKOFF_CEILING = 900
MAX_FAILURES = 4

ALWAYS = datetime.min.replace(tzinfo=timezone.utc)


class AdaptiveScheduler:
    """Decides the earliest time the next unforced poll may run.

    Close to exhaustion the base interval is used as-is; with plenty of quota
    left the ping backs off, since it costs tokens itself. Failures back off
    exponentially from the base interval up to ``BACKOFF_CEILING``.
    """

    def __init__(self, base_interval: int = 60) -> None:
        self.base_interval = base_interval
        self.next_allowed_at = ALWAYS
        self.consecutive_failures = 0

    def is_due(self, now: datetime) -> bool:
        return now >= self.next_allowed_at

    def interval_for(self, usage_percent: float | None) -> int:
        if usage_percent is None:
            return max(self.base_interval, MEDIUM_USAGE_INTERVAL)
        if usage_percent >= HIGH_USAGE_PERCENT:
            return self.base_interval
        if usage_percent >= MEDIUM_USAGE_PERCENT:
            return max(self.base_interval, MEDIUM_USAGE_INTERVAL)
        return max(self.base_interval, LOW_USAGE_INTERVAL)

    def on_success(self, usage_percent: float | None, now: datetime) -> timedelta:
        self.consecutive_failures = 0
        interval = timedelta(seconds=self.interval_for(usage_percent))
        self.next_allowed_at = now + interval
        log.debug("Usage %s%%, next poll in %ss", usage_percent, interval.total_seconds())
        return interval

    def on_failure(self, now: datetime) -> timedelta:
        self.consecutive_failures = min(self.consecutive_failures + 1, MAX_FAILURES)
        backoff = timedelta(
            seconds=min(self.base_interval * 2 ** self.consecutive_failures, BACKOFF_CEILING)
        )
        self.next_allowed_at = now + backoff
        log.debug("Failure #%d, backing off %ss", self.consecutive_failures, backoff.total_seconds())
        return backoff

    def reset(self, now: datetime) -> None:
        self.next_allowed_at = now
        self.consecutive_failures = 0

    def set_base_interval(self, seconds: int, now: datetime) -> None:
        self.base_interval = seconds
        self.reset(now)
