"""
Module: lab_kernel.models.inventory
Responsibility: ORM persistence for lab component stock.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - quantity_available is never negative and never exceeds quantity_total
      (DB check constraints; the loan service checks first and raises a
      typed error).
"""

from __future__ import annotations

from sqlalchemy import CheckConstraint, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lab_kernel.db.base import Base


class ComponentStockModel(Base):
    """Stock level of one component held by one lab."""

    __tablename__ = "component_stock"

    __table_args__ = (
        CheckConstraint(
            "quantity_available >= 0",
            name="ck_component_stock_non_negative",
        ),
        CheckConstraint(
            "quantity_available <= quantity_total",
            name="ck_component_stock_within_total",
        ),
        Index("ix_component_stock_resource", "resource_id"),
    )

    component_id: Mapped[int] = mapped_column(nullable=False, unique=True)
    resource_id: Mapped[int] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    quantity_total: Mapped[int] = mapped_column(nullable=False)
    quantity_available: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ComponentStock {self.component_id} resource={self.resource_id} "
            f"{self.quantity_available}/{self.quantity_total}>"
        )
