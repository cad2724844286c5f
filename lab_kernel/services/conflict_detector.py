"""
lab_kernel.services.conflict_detector -- Time-slot exclusivity checks.

Responsibility:
    Decides whether a half-open interval on a resource and date overlaps
    any live booking or any active fixed timetable entry, and names every
    overlap it finds.

Architecture position:
    Kernel > Services.  Read-only: one selector query plus one schedule
    lookup per resource.  Serialization against concurrent submits is the
    caller's job (SlotLockService).

Invariants enforced:
    - Half-open overlap: back-to-back slots do not conflict.
    - Timetable entries are matched by Sunday=0 day of week and must be
      active.
    - A rejected leg of a multi-resource booking frees its slot.

Failure modes:
    - SlotConflictError from ``ensure_free`` naming each overlap.
"""

from __future__ import annotations

from datetime import date
from typing import Iterable
from uuid import UUID

from sqlalchemy.orm import Session

from lab_kernel.domain.dtos import ConflictSource, SlotConflict
from lab_kernel.domain.ports import ScheduleProvider
from lab_kernel.domain.time_slots import TimeInterval, day_of_week, intervals_overlap
from lab_kernel.exceptions import SlotConflictError
from lab_kernel.logging_config import get_logger
from lab_kernel.selectors.request_selector import RequestSelector

logger = get_logger("services.conflict_detector")


class ConflictDetector:
    """Finds reservations and timetable entries that overlap a slot.

    Contract:
        Safe to call repeatedly; never writes.

    Non-goals:
        Capacity or multi-occupancy: any overlap is a conflict.
    """

    def __init__(self, session: Session, schedule: ScheduleProvider) -> None:
        self._selector = RequestSelector(session)
        self._schedule = schedule

    def find_conflicts(
        self,
        resource_id: int,
        booking_date: date,
        interval: TimeInterval,
        exclude_request_id: UUID | None = None,
    ) -> list[SlotConflict]:
        conflicts: list[SlotConflict] = []

        for entry in self._schedule.entries_for(resource_id, day_of_week(booking_date)):
            if not entry.is_active:
                continue
            if intervals_overlap(
                interval.start, interval.end, entry.start_time, entry.end_time,
            ):
                conflicts.append(
                    SlotConflict(
                        source=ConflictSource.SCHEDULE,
                        resource_id=resource_id,
                        interval=TimeInterval(entry.start_time, entry.end_time),
                        label=entry.label or None,
                    )
                )

        for slot in self._selector.booked_slots(
            resource_id, booking_date, exclude_request_id=exclude_request_id,
        ):
            if intervals_overlap(
                interval.start, interval.end, slot.start_time, slot.end_time,
            ):
                conflicts.append(
                    SlotConflict(
                        source=ConflictSource.REQUEST,
                        resource_id=resource_id,
                        interval=TimeInterval(slot.start_time, slot.end_time),
                        request_id=slot.request_id,
                        status=slot.status,
                    )
                )

        return conflicts

    def is_free(
        self,
        resource_id: int,
        booking_date: date,
        interval: TimeInterval,
    ) -> bool:
        return not self.find_conflicts(resource_id, booking_date, interval)

    def ensure_free(
        self,
        resource_ids: Iterable[int],
        booking_date: date,
        interval: TimeInterval,
    ) -> None:
        """Raise on the first resource whose slot is taken."""
        for resource_id in resource_ids:
            conflicts = self.find_conflicts(resource_id, booking_date, interval)
            if conflicts:
                logger.info(
                    "slot_conflict_detected",
                    extra={
                        "resource_id": resource_id,
                        "booking_date": booking_date.isoformat(),
                        "interval": str(interval),
                        "conflict_count": len(conflicts),
                    },
                )
                raise SlotConflictError(resource_id, booking_date, conflicts)
