"""
SlotLockService -- per (resource, date) serialization of submits.

Responsibility:
    Holds a row-level lock on one SlotLockModel row per (resource, date)
    for the rest of the caller's transaction, so that conflict detection
    and the insert of the new request cannot interleave with another
    submit for the same slot.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by RequestWorkflowService.submit before the conflict check.

Invariants enforced:
    - Lock rows are taken in ascending resource id order, so two
      multi-resource submits never wait on each other in a cycle.
    - The lock is released only when the caller's transaction ends.

Failure modes:
    - IntegrityError: concurrent creation of the same lock row (handled via
      savepoint rollback and re-select).
"""

from __future__ import annotations

from datetime import date
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from lab_kernel.domain.clock import Clock
from lab_kernel.logging_config import get_logger
from lab_kernel.models.slot_lock import SlotLockModel

logger = get_logger("services.slot_lock")


class SlotLockService:
    """Acquires slot lock rows inside the caller's transaction."""

    def __init__(self, session: Session, clock: Clock) -> None:
        self._session = session
        self._clock = clock

    def acquire(self, resource_id: int, slot_date: date) -> SlotLockModel:
        lock = self._select_for_update(resource_id, slot_date)
        if lock is not None:
            return lock

        # First submit for this slot: create the anchor row.  Another
        # transaction may create it at the same time; the savepoint keeps
        # the rest of our transaction intact if we lose that race.
        savepoint = self._session.begin_nested()
        try:
            lock = SlotLockModel(
                resource_id=resource_id,
                slot_date=slot_date,
                created_at=self._clock.now(),
            )
            self._session.add(lock)
            self._session.flush()
            savepoint.commit()
        except IntegrityError:
            logger.debug(
                "slot_lock_race_retry",
                extra={"resource_id": resource_id, "slot_date": slot_date.isoformat()},
            )
            savepoint.rollback()
            lock = self._select_for_update(resource_id, slot_date)
            if lock is None:
                raise
            return lock

        # Lock the row we just created so the hold is uniform.
        locked = self._select_for_update(resource_id, slot_date)
        logger.debug(
            "slot_lock_acquired",
            extra={"resource_id": resource_id, "slot_date": slot_date.isoformat()},
        )
        return locked if locked is not None else lock

    def acquire_all(self, resource_ids: Iterable[int], slot_date: date) -> list[SlotLockModel]:
        return [self.acquire(rid, slot_date) for rid in sorted(set(resource_ids))]

    def _select_for_update(self, resource_id: int, slot_date: date) -> SlotLockModel | None:
        return self._session.execute(
            select(SlotLockModel)
            .where(
                SlotLockModel.resource_id == resource_id,
                SlotLockModel.slot_date == slot_date,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
