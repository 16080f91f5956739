"""
Clock -- injectable time source.

Responsibility:
    Services and engines never call ``datetime.now()`` or ``date.today()``
    directly; they receive a Clock.  Document dates, movement timestamps,
    numbering years and stats periods all derive from it.

Architecture position:
    Kernel > Domain -- zero I/O except SystemClock, the one sanctioned
    boundary for wall-clock time.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        - ``now()`` returns a timezone-aware UTC ``datetime``.
        - ``today()`` is the calendar date of ``now()``.
    """

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Production clock backed by the system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same value on repeated calls until ``advance()``
    or ``set_time()`` is called.
    """

    DEFAULT_TIME = datetime(2026, 3, 2, 10, 0, 0, tzinfo=timezone.utc)

    def __init__(self, fixed_time: datetime | None = None):
        self._fixed_time = fixed_time or self.DEFAULT_TIME
        self._offset = timedelta(0)

    def now(self) -> datetime:
        return (self._fixed_time + self._offset).astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        self._fixed_time = time
        self._offset = timedelta(0)

    def advance(self, seconds: int = 0, *, minutes: int = 0, days: int = 0) -> datetime:
        """Move the clock forward and return the new time."""
        self._offset += timedelta(seconds=seconds, minutes=minutes, days=days)
        return self.now()

    def tick(self) -> datetime:
        """Advance by 1 second and return the new time."""
        return self.advance(1)
