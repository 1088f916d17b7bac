"""
Clock -- injectable time source.

Services receive a Clock through their constructor so that override expiry,
movement timestamps and cost-freeze times are reproducible in tests.
Nothing in the kernel calls ``datetime.now()`` except SystemClock.
"""

from abc import ABC, abstractmethod
from datetime import UTC, datetime, timedelta
from typing import Iterator


class Clock(ABC):
    """Abstract clock.  ``now()`` always returns an aware UTC datetime."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self):
        return self.now().date()


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class DeterministicClock(Clock):
    """
    Test clock that only moves when told to.

    Repeated ``now()`` calls return the same instant until ``advance()``,
    ``tick()`` or ``set_time()``.
    """

    DEFAULT_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or self.DEFAULT_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            time = time.replace(tzinfo=UTC)
        self._current = time

    def advance(self, seconds: float = 1, *, hours: float = 0) -> None:
        self._current = self._current + timedelta(seconds=seconds, hours=hours)

    def tick(self) -> datetime:
        """Advance by 1 second and return the new time."""
        self.advance(1)
        return self.now()


class SequentialClock(Clock):
    """
    Returns the supplied times in order, then repeats the last one.

    Raises:
        ValueError: If initialized with an empty list.
    """

    def __init__(self, times: list[datetime]):
        if not times:
            raise ValueError("SequentialClock requires at least one time")
        self._times: Iterator[datetime] = iter(times)
        self._last_time: datetime | None = None

    def now(self) -> datetime:
        self._last_time = next(self._times, self._last_time)
        return self._last_time
