"""
Injectable time source for the receivables kernel.

Every timestamp the engine persists (``approved_at``, ``deleted_at``,
``allocation_suggested_at``, audit ``created_at``, batch run times) is taken
from a ``Clock`` handed to the service, never from ``datetime.now()``.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime: ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Frozen clock for tests and replays.

    ``now()`` keeps returning the same instant until ``advance()`` moves it,
    so rows written within one operation share a timestamp.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or datetime(2026, 1, 15, 9, 0, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current
