"""
Module: lab_kernel.models.extension
Responsibility: ORM persistence for due-date extension requests on loans.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Status values limited by a DB check constraint.
    - At most one open (``pending``) extension per loan: partial unique
      index on request_id where status = 'pending'.

Failure modes:
    - IntegrityError if a second pending extension is inserted for a loan.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lab_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from lab_kernel.domain.dtos import ExtensionRequest
    from lab_kernel.models.request import ResourceRequestModel


class ExtensionRequestModel(Base):
    """Persistent extension request."""

    __tablename__ = "extension_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_extension_requests_valid_status",
        ),
        Index(
            "ix_extension_requests_one_open",
            "request_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("resource_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    requested_by: Mapped[int] = mapped_column(nullable=False)
    requested_due_date: Mapped[date] = mapped_column(nullable=False)
    previous_due_date: Mapped[date] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    requested_at: Mapped[datetime] = mapped_column(nullable=False)
    decided_by: Mapped[int | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["ResourceRequestModel"] = relationship(
        "ResourceRequestModel",
        back_populates="extensions",
    )

    def __repr__(self) -> str:
        return (
            f"<ExtensionRequest {self.id} request={self.request_id} "
            f"status={self.status}>"
        )

    def to_dto(self) -> ExtensionRequest:
        """Convert ORM model to frozen domain DTO."""
        from lab_kernel.domain.dtos import ExtensionRequest as ExtensionRequestDTO
        from lab_kernel.domain.lifecycle import ExtensionStatus

        return ExtensionRequestDTO(
            id=self.id,
            request_id=self.request_id,
            requested_by=self.requested_by,
            requested_due_date=self.requested_due_date,
            previous_due_date=self.previous_due_date,
            reason=self.reason,
            status=ExtensionStatus(self.status),
            requested_at=self.requested_at,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            remarks=self.remarks,
        )
