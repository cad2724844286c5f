"""
Module: lab_kernel.models.slot_lock
Responsibility: Lock rows that serialize conflict check and insert per
    (resource, date).

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per (resource_id, slot_date) via UNIQUE constraint; the row
      is locked with SELECT ... FOR UPDATE for the duration of a submit.
"""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lab_kernel.db.base import Base


class SlotLockModel(Base):
    """Lock anchor for one resource on one calendar date."""

    __tablename__ = "slot_locks"

    __table_args__ = (
        UniqueConstraint(
            "resource_id", "slot_date",
            name="uq_slot_locks_resource_date",
        ),
    )

    resource_id: Mapped[int] = mapped_column(nullable=False)
    slot_date: Mapped[date] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<SlotLock resource={self.resource_id} date={self.slot_date}>"
