"""
Injectable time source.

Services take a ``Clock`` instead of calling ``datetime.now()``: confirmation,
cancellation and count completion timestamps, audit ``occurred_at`` and the
year embedded in document numbers all come from it.  Tests pass a
``DeterministicClock`` so those values are reproducible.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone

DEFAULT_TEST_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    @abstractmethod
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Always reports the same instant (2024-01-01 12:00 UTC unless given)."""

    def __init__(self, fixed_time: datetime | None = None):
        self.fixed_time = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self.fixed_time
