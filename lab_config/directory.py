"""
Static collaborators (``lab_config.directory``).

Responsibility
--------------
YAML-backed implementations of the kernel's ResourceDirectory and
ScheduleProvider ports, plus a helper that brings the component stock
table in line with the configured inventory.

Architecture position
---------------------
**Config layer** -- bridges configuration into kernel-compatible inputs.
The kernel never imports from here.
"""

from __future__ import annotations

from collections import defaultdict

from sqlalchemy import select
from sqlalchemy.orm import Session

from lab_kernel.domain.ports import ResourceOwnership, ScheduleEntry
from lab_kernel.logging_config import get_logger
from lab_kernel.models.inventory import ComponentStockModel

from lab_config.schema import LabDirectoryConfig

logger = get_logger("config.directory")


class StaticResourceDirectory:
    """Resource -> department -> final authority, from configuration."""

    def __init__(self, config: LabDirectoryConfig) -> None:
        departments = {d.department_id: d for d in config.departments}
        self._ownership: dict[int, ResourceOwnership] = {}
        for r in config.resources:
            dept = departments[r.department_id]
            self._ownership[r.resource_id] = ResourceOwnership(
                resource_id=r.resource_id,
                department_id=dept.department_id,
                final_authority=dept.final_authority,
                authority_user_id=dept.authority_user_id,
                staff_ids=frozenset(r.staff_ids),
                name=r.name,
            )

    def lookup(self, resource_id: int) -> ResourceOwnership | None:
        return self._ownership.get(resource_id)


class StaticScheduleProvider:
    """Fixed weekly timetable, from configuration."""

    def __init__(self, entries: tuple[ScheduleEntry, ...] | list[ScheduleEntry] = ()) -> None:
        self._by_slot: dict[tuple[int, int], list[ScheduleEntry]] = defaultdict(list)
        for entry in entries:
            self._by_slot[(entry.resource_id, entry.day_of_week)].append(entry)

    @classmethod
    def from_config(cls, config: LabDirectoryConfig) -> StaticScheduleProvider:
        return cls(config.schedule)

    def entries_for(self, resource_id: int, day_of_week: int) -> list[ScheduleEntry]:
        return [
            e for e in self._by_slot.get((resource_id, day_of_week), ())
            if e.is_active
        ]


def sync_component_stock(session: Session, config: LabDirectoryConfig) -> int:
    """Insert configured components that have no stock row yet.

    Existing rows are left alone: their available quantity reflects loans
    in flight.  Returns the number of rows inserted.  Flushes only.
    """
    existing = set(session.scalars(select(ComponentStockModel.component_id)))
    inserted = 0
    for c in config.components:
        if c.component_id in existing:
            continue
        session.add(
            ComponentStockModel(
                component_id=c.component_id,
                resource_id=c.resource_id,
                name=c.name,
                quantity_total=c.quantity,
                quantity_available=c.quantity,
            )
        )
        inserted += 1
    session.flush()
    if inserted:
        logger.info("component_stock_seeded", extra={"inserted": inserted})
    return inserted
