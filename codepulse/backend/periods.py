"""One parser for every period spelling the read endpoints accept.

Both the short form (7d, 30d, 90d, 1y) and the leaderboard form (WEEKLY,
MONTHLY, QUARTERLY, YEARLY) map onto the same rolling windows ending now.
"""

from datetime import datetime, timedelta, timezone

from pydantic import BaseModel

from database import utc_iso
from errors import InvalidPeriodError

PERIOD_DAYS = {
    "WEEKLY": 7,
    "MONTHLY": 30,
    "QUARTERLY": 90,
    "YEARLY": 365,
}

ALIASES = {
    "7D": "WEEKLY",
    "30D": "MONTHLY",
    "90D": "QUARTERLY",
    "1Y": "YEARLY",
}


class PeriodWindow(BaseModel):
    key: str
    start: datetime
    end: datetime

    @property
    def days(self) -> int:
        return PERIOD_DAYS[self.key]

    def bounds(self) -> tuple[str, str]:
        """Start/end as the fixed-width strings stored in the database."""
        return utc_iso(self.start), utc_iso(self.end)


def canonical_period(value: str | None, default: str = "MONTHLY") -> str:
    if value is None or not value.strip():
        return default
    key = value.strip().upper()
    key = ALIASES.get(key, key)
    if key not in PERIOD_DAYS:
        raise InvalidPeriodError(
            f"Unknown period {value!r}; expected one of 7d, 30d, 90d, 1y, "
            "WEEKLY, MONTHLY, QUARTERLY, YEARLY"
        )
    return key


def parse_period(value: str | None, now: datetime | None = None) -> PeriodWindow:
    key = canonical_period(value)
    end = now or datetime.now(timezone.utc)
    return PeriodWindow(key=key, start=end - timedelta(days=PERIOD_DAYS[key]), end=end)


def trend_windows(value: str | None, count: int = 6, now: datetime | None = None) -> list[PeriodWindow]:
    """The `count` consecutive windows of this period, most recent first."""
    current = parse_period(value, now)
    windows = [current]
    for _ in range(count - 1):
        previous = windows[-1]
        end = previous.start
        windows.append(PeriodWindow(key=current.key, start=end - timedelta(days=current.days), end=end))
    return windows


def day_range(window: PeriodWindow) -> list[str]:
    """Every calendar day (YYYY-MM-DD) touched by the window."""
    days = []
    current = window.start.date()
    while current <= window.end.date():
        days.append(current.isoformat())
        current += timedelta(days=1)
    return days
