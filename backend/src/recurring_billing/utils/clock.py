"""Injectable clock so scans and tests control "now"."""
from datetime import date, datetime, time, timedelta
from typing import Protocol


class Clock(Protocol):
    """Source of the current date and time (UTC, naive)."""

    def today(self) -> date: ...

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def today(self) -> date:
        return datetime.utcnow().date()

    def now(self) -> datetime:
        return datetime.utcnow()


class FixedClock:
    """
    Clock pinned to a given date, for replays and tests.

    `now()` returns noon of the pinned day unless a time is given.
    """

    def __init__(self, current: date, at: time = time(12, 0)):
        self.current = current
        self.at = at

    def today(self) -> date:
        return self.current

    def now(self) -> datetime:
        return datetime.combine(self.current, self.at)

    def advance(self, days: int) -> None:
        """Move the clock forward by whole days."""
        self.current = self.current + timedelta(days=days)
