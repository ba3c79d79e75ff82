"""
Clock -- injectable time source.

Responsibility:
    Services never call ``datetime.now()`` directly; they receive a Clock.
    Business timestamps (invoice ``created_at``, payment ``recorded_at``)
    therefore come from one place and tests can place events on any day.

Architecture position:
    Kernel > Domain -- pure, except SystemClock, the one sanctioned I/O
    boundary for time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """
    Abstract clock interface.

    Guarantees:
        ``now()`` returns a timezone-aware UTC ``datetime``.
    """

    @abstractmethod
    def now(self) -> datetime:
        """Get the current time (aware, UTC)."""
        ...


class SystemClock(Clock):
    """Production clock returning the actual system time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Test clock with controlled time.

    ``now()`` returns the same instant until ``advance()``, ``tick()`` or
    ``set_time()`` moves it.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        if self._current.tzinfo is None:
            raise ValueError("DeterministicClock requires an aware datetime")

    def now(self) -> datetime:
        return self._current.astimezone(timezone.utc)

    def set_time(self, time: datetime) -> None:
        if time.tzinfo is None:
            raise ValueError("DeterministicClock requires an aware datetime")
        self._current = time

    def advance(self, **delta: float) -> datetime:
        """Move forward by timedelta keyword arguments (``days=3``, ``seconds=1``)."""
        self._current = self._current + timedelta(**delta)
        return self.now()

    def tick(self) -> datetime:
        """Advance by 1 second and return the new time."""
        return self.advance(seconds=1)
