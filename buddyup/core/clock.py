"""Server clock. "Today" is the UTC calendar date of `now()`."""

from datetime import date, datetime, timedelta, timezone
from typing import Optional


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def today(self) -> date:
        return self.now().date()


class FixedClock(SystemClock):
    """Settable clock for tests and replays."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
