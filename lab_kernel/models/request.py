"""
Module: lab_kernel.models.request
Responsibility: ORM persistence for requests, their per-resource decisions
    and their component line items.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - Status values limited by a DB check constraint; transition rules are
      enforced by the service layer.
    - Exactly one of {resource_id, resource decision rows} describes the
      resources: single-resource rows carry resource_id, multi-resource rows
      carry NULL there and one ResourceDecisionModel per resource.
    - One decision row per (request, resource); one line item per
      (request, component) with quantity > 0.
    - A resolved resource decision is never changed again.

Failure modes:
    - IntegrityError on duplicate decision or line item rows.
    - InvalidStateError if a flush would change a resolved decision.
"""

from __future__ import annotations

from datetime import date, datetime, time
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lab_kernel.db.base import Base, TimestampedBase, UUIDString
from lab_kernel.exceptions import InvalidStateError

if TYPE_CHECKING:
    from lab_kernel.domain.dtos import (
        LineItem,
        ResourceDecision,
        ResourceRequest,
    )
    from lab_kernel.models.extension import ExtensionRequestModel


_STATUS_VALUES = (
    "'pending_faculty', 'pending_resource_staff', 'pending_final_authority', "
    "'approved', 'rejected', 'issued', 'return_requested', 'returned'"
)


class ResourceRequestModel(TimestampedBase):
    """Persistent booking or component loan request.

    Contract:
        Status moves only through the conditional update in
        ``services.transitions``; ``version`` increases by one per move.

    Guarantees:
        - department_id, final_authority and final_authority_user_id are
          snapshotted at submission and never re-read from the directory.
        - rejection_reason and rejected_step are set only with status
          ``rejected``.
    """

    __tablename__ = "resource_requests"

    __table_args__ = (
        CheckConstraint(
            f"status IN ({_STATUS_VALUES})",
            name="ck_resource_requests_valid_status",
        ),
        CheckConstraint(
            "kind IN ('booking', 'component_loan')",
            name="ck_resource_requests_valid_kind",
        ),
        CheckConstraint(
            "(is_multi AND resource_id IS NULL) "
            "OR (NOT is_multi AND resource_id IS NOT NULL)",
            name="ck_resource_requests_single_or_multi",
        ),
        # Conflict detector: live bookings on a resource/date
        Index(
            "ix_resource_requests_slot",
            "resource_id", "booking_date", "status",
        ),
        # Sweeper and dashboards: requests by status
        Index(
            "ix_resource_requests_status_multi",
            "status", "is_multi",
        ),
        Index("ix_resource_requests_requester", "requester_id", "created_at"),
    )

    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    requester_id: Mapped[int] = mapped_column(nullable=False)
    requester_role: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(40), nullable=False)
    is_multi: Mapped[bool] = mapped_column(default=False, nullable=False)
    resource_id: Mapped[int | None] = mapped_column(nullable=True)

    # Approval configuration snapshot
    department_id: Mapped[int] = mapped_column(nullable=False)
    final_authority: Mapped[str] = mapped_column(String(30), nullable=False)
    final_authority_user_id: Mapped[int | None] = mapped_column(nullable=True)
    supervisor_id: Mapped[int | None] = mapped_column(nullable=True)

    # Booking details
    booking_date: Mapped[date | None] = mapped_column(nullable=True)
    start_time: Mapped[time | None] = mapped_column(nullable=True)
    end_time: Mapped[time | None] = mapped_column(nullable=True)
    purpose: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Loan details
    due_date: Mapped[date | None] = mapped_column(nullable=True)

    # Per-step sign-off
    faculty_approver_id: Mapped[int | None] = mapped_column(nullable=True)
    faculty_decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    faculty_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    resource_staff_approver_id: Mapped[int | None] = mapped_column(nullable=True)
    resource_staff_decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resource_staff_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    final_approver_id: Mapped[int | None] = mapped_column(nullable=True)
    final_decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    final_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Rejection
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    rejected_step: Mapped[str | None] = mapped_column(String(40), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Loan handover
    issued_at: Mapped[datetime | None] = mapped_column(nullable=True)
    issued_by: Mapped[int | None] = mapped_column(nullable=True)
    return_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_at: Mapped[datetime | None] = mapped_column(nullable=True)
    returned_by: Mapped[int | None] = mapped_column(nullable=True)
    return_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(default=1, nullable=False)

    decisions: Mapped[list["ResourceDecisionModel"]] = relationship(
        "ResourceDecisionModel",
        back_populates="request",
        order_by="ResourceDecisionModel.position",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    items: Mapped[list["RequestLineItemModel"]] = relationship(
        "RequestLineItemModel",
        back_populates="request",
        order_by="RequestLineItemModel.component_id",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )
    extensions: Mapped[list["ExtensionRequestModel"]] = relationship(
        "ExtensionRequestModel",
        back_populates="request",
        order_by="ExtensionRequestModel.requested_at",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<ResourceRequest {self.id} {self.kind} "
            f"status={self.status} multi={self.is_multi}>"
        )

    @property
    def resource_ids(self) -> tuple[int, ...]:
        """All resource ids, in submission order."""
        if self.is_multi:
            return tuple(d.resource_id for d in self.decisions)
        return (self.resource_id,) if self.resource_id is not None else ()

    def decision_for(self, resource_id: int) -> ResourceDecisionModel | None:
        for d in self.decisions:
            if d.resource_id == resource_id:
                return d
        return None

    def to_dto(self) -> ResourceRequest:
        """Convert ORM model to frozen domain DTO."""
        from lab_kernel.domain.dtos import (
            ResourceRequest as ResourceRequestDTO,
            StepDecision,
        )
        from lab_kernel.domain.lifecycle import (
            FinalAuthority,
            RequestKind,
            RequestStatus,
            Role,
        )

        def _step(approver_id, decided_at, remarks) -> StepDecision | None:
            if approver_id is None or decided_at is None:
                return None
            return StepDecision(
                approver_id=approver_id,
                decided_at=decided_at,
                remarks=remarks or "",
            )

        return ResourceRequestDTO(
            id=self.id,
            kind=RequestKind(self.kind),
            requester_id=self.requester_id,
            requester_role=Role(self.requester_role),
            status=RequestStatus(self.status),
            is_multi=self.is_multi,
            department_id=self.department_id,
            final_authority=FinalAuthority(self.final_authority),
            final_authority_user_id=self.final_authority_user_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            version=self.version,
            resource_id=self.resource_id,
            resource_ids=self.resource_ids if self.is_multi else (),
            supervisor_id=self.supervisor_id,
            booking_date=self.booking_date,
            start_time=self.start_time,
            end_time=self.end_time,
            purpose=self.purpose,
            due_date=self.due_date,
            items=tuple(i.to_dto() for i in self.items),
            faculty_decision=_step(
                self.faculty_approver_id, self.faculty_decided_at, self.faculty_remarks,
            ),
            resource_staff_decision=_step(
                self.resource_staff_approver_id,
                self.resource_staff_decided_at,
                self.resource_staff_remarks,
            ),
            final_decision=_step(
                self.final_approver_id, self.final_decided_at, self.final_remarks,
            ),
            resource_staff_decided_at=self.resource_staff_decided_at,
            resource_decisions=tuple(d.to_dto() for d in self.decisions),
            rejection_reason=self.rejection_reason,
            rejected_step=(
                RequestStatus(self.rejected_step) if self.rejected_step else None
            ),
            rejected_at=self.rejected_at,
            issued_at=self.issued_at,
            issued_by=self.issued_by,
            return_requested_at=self.return_requested_at,
            returned_at=self.returned_at,
            return_remarks=self.return_remarks,
        )


class ResourceDecisionModel(Base):
    """Per-resource sub-decision of a multi-resource request.

    Contract:
        Created with the parent, one per resource, all ``pending``.
        Deleted only with the parent.

    Guarantees:
        - UNIQUE(request_id, resource_id).
        - Once ``approved`` or ``rejected`` the status never changes.
    """

    __tablename__ = "resource_decisions"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_resource_decisions_valid_status",
        ),
        UniqueConstraint(
            "request_id", "resource_id",
            name="uq_resource_decisions_request_resource",
        ),
        Index("ix_resource_decisions_request_status", "request_id", "status"),
        # Conflict detector: live legs on a resource
        Index("ix_resource_decisions_resource_status", "resource_id", "status"),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("resource_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    resource_id: Mapped[int] = mapped_column(nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    approver_id: Mapped[int | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    request: Mapped["ResourceRequestModel"] = relationship(
        "ResourceRequestModel",
        back_populates="decisions",
    )

    def __repr__(self) -> str:
        return (
            f"<ResourceDecision request={self.request_id} "
            f"resource={self.resource_id} status={self.status}>"
        )

    def to_dto(self) -> ResourceDecision:
        """Convert ORM model to frozen domain DTO."""
        from lab_kernel.domain.dtos import ResourceDecision as ResourceDecisionDTO
        from lab_kernel.domain.lifecycle import ResourceDecisionStatus

        return ResourceDecisionDTO(
            resource_id=self.resource_id,
            status=ResourceDecisionStatus(self.status),
            approver_id=self.approver_id,
            decided_at=self.decided_at,
            remarks=self.remarks or "",
        )


class RequestLineItemModel(Base):
    """One component line of a loan request."""

    __tablename__ = "request_line_items"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_request_line_items_positive"),
        UniqueConstraint(
            "request_id", "component_id",
            name="uq_request_line_items_component",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("resource_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    component_id: Mapped[int] = mapped_column(nullable=False)
    quantity: Mapped[int] = mapped_column(nullable=False)

    request: Mapped["ResourceRequestModel"] = relationship(
        "ResourceRequestModel",
        back_populates="items",
    )

    def to_dto(self) -> LineItem:
        """Convert ORM model to frozen domain DTO."""
        from lab_kernel.domain.dtos import LineItem as LineItemDTO

        return LineItemDTO(component_id=self.component_id, quantity=self.quantity)


# =============================================================================
# ORM-Level Guard for Resolved Decisions
# =============================================================================


@event.listens_for(ResourceDecisionModel, "before_update")
def prevent_resolved_decision_change(mapper, connection, target):
    """A decision that left ``pending`` may not change status again."""
    history = inspect(target).attrs.status.history
    if not history.has_changes():
        return
    previous = history.deleted[0] if history.deleted else None
    if previous is not None and previous != "pending":
        raise InvalidStateError(
            "change the decision for resource "
            f"{target.resource_id} of",
            previous,
            detail="resource decisions are final once resolved",
        )
