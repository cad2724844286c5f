"""
lab_kernel.services.aggregator -- Multi-resource decision aggregation.

Responsibility:
    Records one resource's decision on a multi-resource request and
    re-derives the parent status from all of its decisions.  ``aggregate``
    is the only code path that moves a multi-resource parent off the
    resource-staff step; ``decide`` and the reconciliation sweeper both
    call it.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Re-entrant: with any decision pending, or with the parent already
      past ``pending_resource_staff``, aggregate is a no-op.
    - Decisions are re-read from the database on every call, so a
      concurrent writer's decision is never missed.
    - ``resource_staff_decided_at`` is stamped once, when the parent first
      leaves ``pending_resource_staff``.
    - Lab-coordinator departments approve directly once any resource is
      approved; HOD departments move to ``pending_final_authority``.

Failure modes:
    - RequestNotFoundError if the request does not exist.
    - ValidationError if a decision names a resource outside the request.
    - InvalidStateError if that resource was already decided.
    - StaleStatusError if another writer moved the parent first.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lab_kernel.domain.aggregation import ALL_REJECTED_REASON, derive_parent_status
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.lifecycle import (
    OUTCOME_TO_DECISION_STATUS,
    DecisionOutcome,
    FinalAuthority,
    RequestStatus,
    ResourceDecisionStatus,
)
from lab_kernel.exceptions import (
    InvalidStateError,
    RequestNotFoundError,
    StaleStatusError,
    ValidationError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.request import ResourceDecisionModel, ResourceRequestModel
from lab_kernel.services.transitions import move_status

logger = get_logger("services.aggregator")


@dataclass(frozen=True)
class AggregateResult:
    """What one aggregate pass did to a parent request."""

    request_id: UUID
    previous_status: RequestStatus
    status: RequestStatus
    approved: int = 0
    rejected: int = 0
    pending: int = 0

    @property
    def changed(self) -> bool:
        return self.previous_status != self.status


class MultiResourceAggregator:
    """Per-resource decisions in, parent status out."""

    def __init__(self, session: Session, clock: Clock | None = None) -> None:
        self._session = session
        self._clock = clock or SystemClock()

    # -----------------------------------------------------------------
    # Leg decisions
    # -----------------------------------------------------------------

    def record_decision(
        self,
        model: ResourceRequestModel,
        resource_id: int,
        outcome: DecisionOutcome,
        approver_id: int,
        remarks: str = "",
    ) -> ResourceDecisionModel:
        """Resolve one resource's pending decision."""
        decision = model.decision_for(resource_id)
        if decision is None:
            raise ValidationError(
                f"Resource {resource_id} is not part of request {model.id}",
                field="resource_id",
            )
        if decision.status != ResourceDecisionStatus.PENDING.value:
            raise InvalidStateError(
                "decide",
                model.status,
                detail=f"resource {resource_id} is already {decision.status}",
            )

        # Conditional write; a leg resolved by another transaction matches no row.
        result = self._session.execute(
            update(ResourceDecisionModel)
            .where(
                ResourceDecisionModel.id == decision.id,
                ResourceDecisionModel.status == ResourceDecisionStatus.PENDING.value,
            )
            .values(
                status=OUTCOME_TO_DECISION_STATUS[outcome].value,
                approver_id=approver_id,
                decided_at=self._clock.now(),
                remarks=remarks or None,
            )
            .execution_options(synchronize_session="evaluate")
        )
        if result.rowcount != 1:
            logger.warning(
                "stale_decision_write",
                extra={"request_id": str(model.id), "resource_id": resource_id},
            )
            raise StaleStatusError(str(model.id), ResourceDecisionStatus.PENDING.value)

        logger.info(
            "resource_decision_recorded",
            extra={
                "request_id": str(model.id),
                "resource_id": resource_id,
                "outcome": outcome.value,
                "approver_id": approver_id,
            },
        )
        return decision

    # -----------------------------------------------------------------
    # Aggregation
    # -----------------------------------------------------------------

    def aggregate(self, request_id: UUID) -> AggregateResult:
        """Re-derive the parent status from its decisions."""
        model = self._session.execute(
            select(ResourceRequestModel)
            .where(ResourceRequestModel.id == request_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))

        current = RequestStatus(model.status)
        if not model.is_multi or current is not RequestStatus.PENDING_RESOURCE_STAFF:
            return AggregateResult(
                request_id=request_id,
                previous_status=current,
                status=current,
            )

        statuses = self._session.scalars(
            select(ResourceDecisionModel.status)
            .where(ResourceDecisionModel.request_id == request_id)
        ).all()
        outcome = derive_parent_status(
            (ResourceDecisionStatus(s) for s in statuses),
            FinalAuthority(model.final_authority),
        )
        if outcome.next_status is None:
            return AggregateResult(
                request_id=request_id,
                previous_status=current,
                status=current,
                approved=outcome.approved,
                rejected=outcome.rejected,
                pending=outcome.pending,
            )

        now = self._clock.now()
        values: dict = {}
        if model.resource_staff_decided_at is None:
            values["resource_staff_decided_at"] = now
        if outcome.next_status is RequestStatus.REJECTED:
            values.update(
                rejection_reason=ALL_REJECTED_REASON,
                rejected_step=RequestStatus.PENDING_RESOURCE_STAFF.value,
                rejected_at=now,
            )

        move_status(
            self._session,
            model,
            outcome.next_status,
            clock=self._clock,
            operation="aggregate",
            event_type=_EVENT_BY_STATUS[outcome.next_status],
            values=values,
            detail={
                "approved": str(outcome.approved),
                "rejected": str(outcome.rejected),
            },
        )

        logger.info(
            "aggregate_applied",
            extra={
                "request_id": str(request_id),
                "from_status": current.value,
                "to_status": outcome.next_status.value,
                "approved": outcome.approved,
                "rejected": outcome.rejected,
                "final_authority": model.final_authority,
            },
        )
        return AggregateResult(
            request_id=request_id,
            previous_status=current,
            status=outcome.next_status,
            approved=outcome.approved,
            rejected=outcome.rejected,
            pending=0,
        )


_EVENT_BY_STATUS: dict[RequestStatus, str] = {
    RequestStatus.PENDING_FINAL_AUTHORITY: "request_forwarded_to_final_authority",
    RequestStatus.APPROVED: "request_approved",
    RequestStatus.REJECTED: "request_rejected",
}
