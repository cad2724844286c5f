"""
Module: lab_kernel.selectors.request_selector
Responsibility: Read paths over requests: single lookup, live bookings that
    hold a slot, multi-resource requests stuck after all legs resolved, and
    issued loans that are due or overdue.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A single-resource booking holds its slot while its status is blocking.
    - A multi-resource leg holds its slot while the parent status is
      blocking and the leg itself has not been rejected.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time, timedelta
from uuid import UUID

from sqlalchemy import and_, exists, select

from lab_kernel.domain.dtos import DueLoan, DueLoans, ResourceRequest
from lab_kernel.domain.lifecycle import (
    BLOCKING_STATUSES,
    ExtensionStatus,
    RequestKind,
    RequestStatus,
    ResourceDecisionStatus,
)
from lab_kernel.models.extension import ExtensionRequestModel
from lab_kernel.models.request import ResourceDecisionModel, ResourceRequestModel
from lab_kernel.selectors.base import BaseSelector

_BLOCKING = sorted(s.value for s in BLOCKING_STATUSES)

# Loans due within this many days count as upcoming.
UPCOMING_WINDOW_DAYS = 1


@dataclass(frozen=True)
class BookedSlot:
    """A live booking occupying part of a resource's day."""

    request_id: UUID
    resource_id: int
    status: RequestStatus
    start_time: time
    end_time: time


class RequestSelector(BaseSelector[ResourceRequestModel]):
    """Read-only queries over resource requests."""

    def get(self, request_id: UUID) -> ResourceRequest | None:
        model = self.session.get(ResourceRequestModel, request_id)
        return model.to_dto() if model is not None else None

    def booked_slots(
        self,
        resource_id: int,
        booking_date: date,
        exclude_request_id: UUID | None = None,
    ) -> list[BookedSlot]:
        """Live bookings on ``resource_id`` for ``booking_date``."""
        single = (
            select(
                ResourceRequestModel.id,
                ResourceRequestModel.status,
                ResourceRequestModel.start_time,
                ResourceRequestModel.end_time,
            )
            .where(
                ResourceRequestModel.kind == RequestKind.BOOKING.value,
                ResourceRequestModel.is_multi.is_(False),
                ResourceRequestModel.resource_id == resource_id,
                ResourceRequestModel.booking_date == booking_date,
                ResourceRequestModel.status.in_(_BLOCKING),
            )
        )
        legs = (
            select(
                ResourceRequestModel.id,
                ResourceRequestModel.status,
                ResourceRequestModel.start_time,
                ResourceRequestModel.end_time,
            )
            .join(
                ResourceDecisionModel,
                ResourceDecisionModel.request_id == ResourceRequestModel.id,
            )
            .where(
                ResourceRequestModel.kind == RequestKind.BOOKING.value,
                ResourceRequestModel.is_multi.is_(True),
                ResourceDecisionModel.resource_id == resource_id,
                ResourceDecisionModel.status != ResourceDecisionStatus.REJECTED.value,
                ResourceRequestModel.booking_date == booking_date,
                ResourceRequestModel.status.in_(_BLOCKING),
            )
        )
        if exclude_request_id is not None:
            single = single.where(ResourceRequestModel.id != exclude_request_id)
            legs = legs.where(ResourceRequestModel.id != exclude_request_id)

        slots: list[BookedSlot] = []
        for stmt in (single, legs):
            for row in self.session.execute(stmt):
                if row.start_time is None or row.end_time is None:
                    continue
                slots.append(
                    BookedSlot(
                        request_id=row.id,
                        resource_id=resource_id,
                        status=RequestStatus(row.status),
                        start_time=row.start_time,
                        end_time=row.end_time,
                    )
                )
        slots.sort(key=lambda s: (s.start_time, str(s.request_id)))
        return slots

    def stuck_multi_resource_ids(self, limit: int | None = None) -> list[UUID]:
        """Multi-resource requests at the resource-staff step with no pending leg."""
        any_leg = exists().where(
            ResourceDecisionModel.request_id == ResourceRequestModel.id,
        )
        pending_leg = exists().where(
            and_(
                ResourceDecisionModel.request_id == ResourceRequestModel.id,
                ResourceDecisionModel.status == ResourceDecisionStatus.PENDING.value,
            )
        )
        stmt = (
            select(ResourceRequestModel.id)
            .where(
                ResourceRequestModel.is_multi.is_(True),
                ResourceRequestModel.status
                == RequestStatus.PENDING_RESOURCE_STAFF.value,
                any_leg,
                ~pending_leg,
            )
            .order_by(ResourceRequestModel.created_at, ResourceRequestModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt))

    def open_extension(self, request_id: UUID) -> ExtensionRequestModel | None:
        """The pending extension for a loan, if any.

        Returns the ORM row so the caller can decide it inside its own
        transaction.
        """
        return self.session.scalars(
            select(ExtensionRequestModel).where(
                ExtensionRequestModel.request_id == request_id,
                ExtensionRequestModel.status == ExtensionStatus.PENDING.value,
            )
        ).one_or_none()

    def due_loans(self, as_of: date) -> DueLoans:
        """Outstanding loans (issued or awaiting return confirmation) due within
        the upcoming window, and overdue loans."""
        horizon = as_of + timedelta(days=UPCOMING_WINDOW_DAYS)
        rows = self.session.execute(
            select(
                ResourceRequestModel.id,
                ResourceRequestModel.requester_id,
                ResourceRequestModel.resource_id,
                ResourceRequestModel.due_date,
            )
            .where(
                ResourceRequestModel.kind == RequestKind.COMPONENT_LOAN.value,
                ResourceRequestModel.status.in_((
                    RequestStatus.ISSUED.value,
                    RequestStatus.RETURN_REQUESTED.value,
                )),
                ResourceRequestModel.returned_at.is_(None),
                ResourceRequestModel.due_date.is_not(None),
                ResourceRequestModel.due_date <= horizon,
            )
            .order_by(ResourceRequestModel.due_date, ResourceRequestModel.id)
        ).all()

        upcoming: list[DueLoan] = []
        overdue: list[DueLoan] = []
        for row in rows:
            loan = DueLoan(
                request_id=row.id,
                requester_id=row.requester_id,
                resource_id=row.resource_id,
                due_date=row.due_date,
                days_overdue=max((as_of - row.due_date).days, 0),
            )
            if row.due_date < as_of:
                overdue.append(loan)
            else:
                upcoming.append(loan)
        return DueLoans(as_of=as_of, upcoming=tuple(upcoming), overdue=tuple(overdue))
