"""Token burn-rate estimate and its direction between polls."""

from codex_tracker.models import Trend, UsageSnapshot

TREND_THRESHOLD = 0.05  # percentage points


def hourly_burn_percent(snapshot: UsageSnapshot, base_interval: int) -> float | None:
    """Share of the token quota one hour of probing at ``base_interval`` uses."""
    cost = snapshot.request_tokens_cost
    limit = snapshot.tokens_limit
    if not cost or not limit or cost <= 0 or limit <= 0 or base_interval <= 0:
        return None
    return cost * (3600 / base_interval) / limit * 100


class TrendTracker:
    def __init__(self) -> None:
        self.previous_burn_percent: float | None = None
        self.trend = Trend.STEADY

    def update(self, snapshot: UsageSnapshot, base_interval: int) -> Trend:
        current = hourly_burn_percent(snapshot, base_interval)
        if current is None:
            self.reset()
            return self.trend

        previous = self.previous_burn_percent
        if previous is None:
            self.trend = Trend.STEADY
        elif current - previous > TREND_THRESHOLD:
            self.trend = Trend.RISING
        elif previous - current > TREND_THRESHOLD:
            self.trend = Trend.FALLING
        else:
            self.trend = Trend.STEADY
        self.previous_burn_percent = current
        return self.trend

    def reset(self) -> None:
        self.previous_burn_percent = None
        self.trend = Trend.STEADY
