"""
Time slot arithmetic (``lab_kernel.domain.time_slots``).

Responsibility
--------------
Same-day wall-clock intervals and the overlap test used by the conflict
detector, plus the day-of-week convention shared with timetable entries.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* Intervals are half-open ``[start, end)`` with ``start < end``; touching
  intervals (``a.end == b.start``) do not overlap.
* Day of week is Sunday=0 .. Saturday=6 everywhere.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time


@dataclass(frozen=True)
class TimeInterval:
    """A half-open same-day interval ``[start, end)``."""

    start: time
    end: time

    def __post_init__(self) -> None:
        if self.start >= self.end:
            raise ValueError(
                f"Interval end {self.end.isoformat()} must be after start "
                f"{self.start.isoformat()}"
            )

    def overlaps(self, other: TimeInterval) -> bool:
        return self.start < other.end and other.start < self.end

    def __str__(self) -> str:
        return f"{self.start.strftime('%H:%M')}-{self.end.strftime('%H:%M')}"


def intervals_overlap(start_a: time, end_a: time, start_b: time, end_b: time) -> bool:
    """Overlap test on raw bounds, for rows that were never validated."""
    return start_a < end_b and start_b < end_a


def day_of_week(d: date) -> int:
    """Day of week with Sunday=0 .. Saturday=6."""
    # date.weekday() is Monday=0 .. Sunday=6
    return (d.weekday() + 1) % 7


DAY_NAMES: tuple[str, ...] = (
    "Sunday",
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
)
