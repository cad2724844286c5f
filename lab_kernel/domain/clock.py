"""
Clock -- injectable source of "now" and "today".

Responsibility:
    Request timestamps (``created_at``, per-step ``*_decided_at``,
    ``issued_at``, ``returned_at``), the past-due check on loan submission
    and the due-loan query all read time through a Clock handed to the
    service, never from ``datetime.now()`` or ``date.today()``.

Architecture position:
    Kernel > Domain.  SystemClock is the only place wall time is read.
"""

from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone

# Monday, so weekday timetable entries apply to the default test day.
DEFAULT_TEST_TIME = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC time for services."""

    @abstractmethod
    def now(self) -> datetime:
        ...

    def today(self) -> date:
        return self.now().date()


class SystemClock(Clock):
    """Wall clock, UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Manually driven clock for tests.

    ``now()`` only changes through ``advance``, ``advance_days``, ``tick`` or
    ``set_time``.
    """

    def __init__(self, fixed_time: datetime | None = None):
        self._current = fixed_time or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def set_time(self, moment: datetime) -> None:
        self._current = moment

    def advance(self, seconds: int = 1) -> None:
        self._current += timedelta(seconds=seconds)

    def advance_days(self, days: int) -> None:
        self._current += timedelta(days=days)

    def tick(self) -> datetime:
        """One second forward; returns the new time."""
        self.advance()
        return self._current
