"""
Injectable time source.

Offer expiry, bid validity, early-payment date checks and the overdue sweep
all ask a Clock for "now" instead of calling ``datetime.now()`` or
``date.today()``; every service receives one through its constructor.
``SystemClock`` is the only place that reads the wall clock.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# 2024-01-01 12:00 UTC; test invoices are issued that day and due 2024-03-31.
DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time, timezone-aware, in UTC."""

    def today(self) -> date:
        """UTC calendar date of ``now()``; due dates and early-payment dates compare against this."""
        return self.now().astimezone(timezone.utc).date()


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock for tests. Time only moves through ``advance`` or ``set_time``."""

    def __init__(self, fixed_time: datetime | None = None):
        self._now = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._now

    def set_time(self, time: datetime) -> None:
        self._now = time

    def advance(self, seconds: int = 1) -> None:
        self._now += timedelta(seconds=seconds)
