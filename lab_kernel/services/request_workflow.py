"""
lab_kernel.services.request_workflow -- Request state machine.

Responsibility:
    Submission, per-step approve/reject and withdrawal of bookings and
    component loans.  Resolves the approval chain at submission, guards
    slot exclusivity, enforces role gating at every step, and hands
    multi-resource leg decisions to the aggregator.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.
    Only flushes; the caller (WorkflowEngine or a test) owns the commit.

Invariants enforced:
    - The initial status comes from the approval chain for the requester
      role; a request never holds a status its chain skips.
    - Department, final authority and authority user are snapshotted at
      submission and never looked up again for that request.
    - Conflict check and insert run under slot locks for every
      (resource, date) the booking touches.
    - Role gating: the acting role must be the one the current step
      requires.  Known supervisor, staff and authority users narrow it
      further to those users.
    - Rejection records reason, step and time, and is terminal.
    - Withdrawal only by the requester and only before any handover.

Failure modes:
    - ValidationError / DirectoryLookupError on malformed submissions.
    - SlotConflictError when the slot is taken.
    - AuthorizationError on the wrong role or user for the step.
    - InvalidStateError when the operation does not fit the current status.
    - StaleStatusError when a concurrent writer moved the request first.
    - RequestNotFoundError for unknown ids.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Sequence
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from lab_kernel.domain.approval_chain import (
    ApprovalStep,
    STATUS_STEP,
    can_submit,
    resolve_chain,
    step_label,
    step_role,
)
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import LineItem, ResourceRequest, TransitionEvent
from lab_kernel.domain.lifecycle import (
    PENDING_STATUSES,
    WITHDRAWABLE_STATUSES,
    DecisionOutcome,
    FinalAuthority,
    RequestKind,
    RequestStatus,
    ResourceDecisionStatus,
    Role,
)
from lab_kernel.domain.ports import ResourceDirectory, ResourceOwnership, ScheduleProvider
from lab_kernel.domain.time_slots import TimeInterval
from lab_kernel.exceptions import (
    AuthorizationError,
    DirectoryLookupError,
    InvalidStateError,
    RequestNotFoundError,
    StaleStatusError,
    ValidationError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.inventory import ComponentStockModel
from lab_kernel.models.request import (
    RequestLineItemModel,
    ResourceDecisionModel,
    ResourceRequestModel,
)
from lab_kernel.services.aggregator import MultiResourceAggregator
from lab_kernel.services.conflict_detector import ConflictDetector
from lab_kernel.services.notifications import record_event
from lab_kernel.services.slot_lock_service import SlotLockService
from lab_kernel.services.transitions import move_status

logger = get_logger("services.request_workflow")


@dataclass(frozen=True)
class SubmitDetails:
    """Kind-specific fields of a submission."""

    booking_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    purpose: str | None = None
    due_date: date | None = None
    items: tuple[LineItem, ...] = ()
    supervisor_id: int | None = None


# Column prefix on ResourceRequestModel for each step's sign-off.
_STEP_COLUMNS: dict[ApprovalStep, str] = {
    ApprovalStep.FACULTY: "faculty",
    ApprovalStep.RESOURCE_STAFF: "resource_staff",
    ApprovalStep.FINAL_AUTHORITY: "final",
}

_APPROVE_EVENT: dict[RequestStatus, str] = {
    RequestStatus.PENDING_RESOURCE_STAFF: "request_forwarded_to_resource_staff",
    RequestStatus.PENDING_FINAL_AUTHORITY: "request_forwarded_to_final_authority",
    RequestStatus.APPROVED: "request_approved",
}


class RequestWorkflowService:
    """Submit, decide and withdraw requests.

    Contract:
        Every public method runs inside the caller's transaction and leaves
        it consistent: either the whole transition is flushed or an
        exception is raised before anything the caller should keep.

    Non-goals:
        Commit, notification delivery and log context binding belong to
        the WorkflowEngine facade.
    """

    def __init__(
        self,
        session: Session,
        directory: ResourceDirectory,
        schedule: ScheduleProvider,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._directory = directory
        self._clock = clock or SystemClock()
        self._detector = ConflictDetector(session, schedule)
        self._locks = SlotLockService(session, self._clock)
        self._aggregator = MultiResourceAggregator(session, self._clock)

    # =====================================================================
    # Submit
    # =====================================================================

    def submit(
        self,
        kind: RequestKind,
        requester_id: int,
        requester_role: Role,
        resource_ids: Sequence[int],
        details: SubmitDetails,
    ) -> ResourceRequest:
        """Create a request at the first step of its approval chain."""
        if not can_submit(requester_role):
            raise ValidationError(
                f"Role {requester_role.value} cannot submit requests",
                field="requester_role",
            )
        resources = self._validate_resources(kind, resource_ids)
        owners = [self._lookup(rid) for rid in resources]
        primary = owners[0]

        items: tuple[LineItem, ...] = ()
        interval: TimeInterval | None = None
        if kind is RequestKind.BOOKING:
            interval = self._validate_booking(details)
        else:
            items = self._validate_loan(details, resources[0])

        chain = resolve_chain(requester_role, primary.final_authority)
        is_multi = len(resources) > 1

        if interval is not None:
            self._locks.acquire_all(resources, details.booking_date)
            self._detector.ensure_free(resources, details.booking_date, interval)

        now = self._clock.now()
        model = ResourceRequestModel(
            kind=kind.value,
            requester_id=requester_id,
            requester_role=requester_role.value,
            status=chain.initial_status.value,
            is_multi=is_multi,
            resource_id=None if is_multi else resources[0],
            department_id=primary.department_id,
            final_authority=primary.final_authority.value,
            final_authority_user_id=primary.authority_user_id,
            supervisor_id=(
                details.supervisor_id
                if chain.initial_status is RequestStatus.PENDING_FACULTY
                else None
            ),
            booking_date=details.booking_date if interval is not None else None,
            start_time=details.start_time if interval is not None else None,
            end_time=details.end_time if interval is not None else None,
            purpose=details.purpose.strip() if interval is not None else None,
            due_date=details.due_date if kind is RequestKind.COMPONENT_LOAN else None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        if is_multi:
            model.decisions = [
                ResourceDecisionModel(
                    resource_id=rid,
                    position=position,
                    status=ResourceDecisionStatus.PENDING.value,
                )
                for position, rid in enumerate(resources)
            ]
        model.items = [
            RequestLineItemModel(component_id=i.component_id, quantity=i.quantity)
            for i in items
        ]
        self._session.add(model)
        self._session.flush()

        record_event(
            self._session,
            TransitionEvent(
                event_type="request_submitted",
                request_id=model.id,
                kind=kind,
                from_status=None,
                to_status=chain.initial_status,
                occurred_at=now,
                actor_id=requester_id,
                requester_id=requester_id,
                detail={"first_step": chain.steps[0].label},
            ),
        )
        logger.info(
            "request_submitted",
            extra={
                "request_id": str(model.id),
                "kind": kind.value,
                "requester_role": requester_role.value,
                "resource_ids": list(resources),
                "status": chain.initial_status.value,
                "final_authority": primary.final_authority.value,
            },
        )
        return model.to_dto()

    def _validate_resources(self, kind: RequestKind, resource_ids: Sequence[int]) -> tuple[int, ...]:
        resources = tuple(resource_ids)
        if not resources:
            raise ValidationError("At least one resource is required", field="resource_ids")
        if len(set(resources)) != len(resources):
            raise ValidationError("Resource ids must be distinct", field="resource_ids")
        if kind is RequestKind.COMPONENT_LOAN and len(resources) > 1:
            raise ValidationError(
                "A component loan is drawn from exactly one lab",
                field="resource_ids",
            )
        return resources

    def _lookup(self, resource_id: int) -> ResourceOwnership:
        ownership = self._directory.lookup(resource_id)
        if ownership is None:
            raise DirectoryLookupError(resource_id)
        return ownership

    def _validate_booking(self, details: SubmitDetails) -> TimeInterval:
        if details.booking_date is None:
            raise ValidationError("Booking date is required", field="booking_date")
        if details.start_time is None or details.end_time is None:
            raise ValidationError("Start and end time are required", field="start_time")
        if details.end_time <= details.start_time:
            raise ValidationError("End time must be after start time", field="end_time")
        if not details.purpose or not details.purpose.strip():
            raise ValidationError("Purpose is required", field="purpose")
        return TimeInterval(details.start_time, details.end_time)

    def _validate_loan(self, details: SubmitDetails, resource_id: int) -> tuple[LineItem, ...]:
        if details.due_date is None:
            raise ValidationError("Due date is required", field="due_date")
        if details.due_date < self._clock.today():
            raise ValidationError("Due date cannot be in the past", field="due_date")
        if not details.items:
            raise ValidationError("At least one component is required", field="items")

        merged: dict[int, int] = {}
        for item in details.items:
            if item.quantity <= 0:
                raise ValidationError(
                    f"Quantity for component {item.component_id} must be positive",
                    field="items",
                )
            merged[item.component_id] = merged.get(item.component_id, 0) + item.quantity

        known = set(
            self._session.scalars(
                select(ComponentStockModel.component_id).where(
                    ComponentStockModel.component_id.in_(merged),
                    ComponentStockModel.resource_id == resource_id,
                )
            )
        )
        missing = sorted(set(merged) - known)
        if missing:
            raise ValidationError(
                f"Components {missing} are not held by resource {resource_id}",
                field="items",
            )
        return tuple(LineItem(cid, qty) for cid, qty in sorted(merged.items()))

    # =====================================================================
    # Decide
    # =====================================================================

    def decide(
        self,
        request_id: UUID,
        acting_user_id: int,
        acting_role: Role,
        outcome: DecisionOutcome,
        remarks: str = "",
        resource_id: int | None = None,
    ) -> ResourceRequest:
        """Approve or reject the request at its current step."""
        model = self._load(request_id)
        status = RequestStatus(model.status)
        if status not in PENDING_STATUSES:
            raise InvalidStateError("decide", status.value)

        step = STATUS_STEP[status]
        authority = FinalAuthority(model.final_authority)
        self._require_role(model, step, authority, acting_role)

        leg = step is ApprovalStep.RESOURCE_STAFF and model.is_multi
        if leg and resource_id is None:
            raise ValidationError(
                "resource_id is required to decide one resource of a "
                "multi-resource request",
                field="resource_id",
            )
        if leg and model.decision_for(resource_id) is None:
            raise ValidationError(
                f"Resource {resource_id} is not part of request {model.id}",
                field="resource_id",
            )

        self._require_assignee(model, step, authority, acting_user_id, resource_id)

        remarks = (remarks or "").strip()
        if outcome is DecisionOutcome.REJECT and not remarks:
            raise ValidationError("Remarks are required when rejecting", field="remarks")

        if leg:
            self._aggregator.record_decision(
                model, resource_id, outcome, acting_user_id, remarks,
            )
            self._aggregator.aggregate(model.id)
        elif outcome is DecisionOutcome.REJECT:
            self._reject(model, step, status, acting_user_id, remarks)
        else:
            self._approve(model, step, status, acting_user_id, remarks)

        self._session.flush()
        return model.to_dto()

    def _require_role(
        self,
        model: ResourceRequestModel,
        step: ApprovalStep,
        authority: FinalAuthority,
        acting_role: Role,
    ) -> None:
        required = step_role(step, authority)
        label = step_label(step, authority)
        if acting_role is not required:
            logger.warning(
                "decision_role_mismatch",
                extra={
                    "request_id": str(model.id),
                    "acting_role": acting_role.value,
                    "required_role": required.value,
                    "status": model.status,
                },
            )
            raise AuthorizationError(
                f"Step '{label}' ({model.status}) requires role {required.value}, "
                f"not {acting_role.value}",
                required_role=required.value,
                step=model.status,
            )

    def _require_assignee(
        self,
        model: ResourceRequestModel,
        step: ApprovalStep,
        authority: FinalAuthority,
        acting_user_id: int,
        resource_id: int | None,
    ) -> None:
        required = step_role(step, authority)
        label = step_label(step, authority)
        if step is ApprovalStep.FACULTY:
            allowed = None if model.supervisor_id is None else {model.supervisor_id}
        elif step is ApprovalStep.RESOURCE_STAFF:
            target = resource_id if model.is_multi else model.resource_id
            ownership = self._directory.lookup(target) if target is not None else None
            allowed = set(ownership.staff_ids) if ownership and ownership.staff_ids else None
        else:
            allowed = (
                None
                if model.final_authority_user_id is None
                else {model.final_authority_user_id}
            )

        if allowed is not None and acting_user_id not in allowed:
            raise AuthorizationError(
                f"User {acting_user_id} is not the assigned {label} "
                f"for this request ({model.status})",
                required_role=required.value,
                step=model.status,
            )

    def _approve(
        self,
        model: ResourceRequestModel,
        step: ApprovalStep,
        status: RequestStatus,
        acting_user_id: int,
        remarks: str,
    ) -> None:
        chain = resolve_chain(Role(model.requester_role), FinalAuthority(model.final_authority))
        target = chain.next_status(status)
        now = self._clock.now()
        prefix = _STEP_COLUMNS[step]
        move_status(
            self._session,
            model,
            target,
            clock=self._clock,
            operation="approve",
            event_type=_APPROVE_EVENT[target],
            actor_id=acting_user_id,
            values={
                f"{prefix}_approver_id": acting_user_id,
                f"{prefix}_decided_at": now,
                f"{prefix}_remarks": remarks or None,
            },
        )

    def _reject(
        self,
        model: ResourceRequestModel,
        step: ApprovalStep,
        status: RequestStatus,
        acting_user_id: int,
        remarks: str,
    ) -> None:
        now = self._clock.now()
        prefix = _STEP_COLUMNS[step]
        move_status(
            self._session,
            model,
            RequestStatus.REJECTED,
            clock=self._clock,
            operation="reject",
            event_type="request_rejected",
            actor_id=acting_user_id,
            values={
                f"{prefix}_approver_id": acting_user_id,
                f"{prefix}_decided_at": now,
                f"{prefix}_remarks": remarks,
                "rejection_reason": remarks,
                "rejected_step": status.value,
                "rejected_at": now,
            },
            detail={"rejected_step": status.value},
        )

    # =====================================================================
    # Withdraw
    # =====================================================================

    def withdraw(self, request_id: UUID, requester_id: int) -> None:
        """Delete a request that has not passed its last approval step."""
        model = self._load(request_id)
        status = RequestStatus(model.status)
        if status not in WITHDRAWABLE_STATUSES:
            raise InvalidStateError("withdraw", status.value)
        if model.requester_id != requester_id:
            raise AuthorizationError(
                "Only the original requester may withdraw a request",
                step=status.value,
            )

        # Claim the row under the optimistic check before deleting it.
        claimed = self._session.execute(
            update(ResourceRequestModel)
            .where(
                ResourceRequestModel.id == model.id,
                ResourceRequestModel.status == status.value,
            )
            .values(version=model.version + 1, updated_at=self._clock.now())
            .execution_options(synchronize_session="evaluate")
        )
        if claimed.rowcount != 1:
            raise StaleStatusError(str(model.id), status.value)

        kind = RequestKind(model.kind)
        resource_count = len(model.resource_ids)
        self._session.delete(model)
        self._session.flush()

        record_event(
            self._session,
            TransitionEvent(
                event_type="request_withdrawn",
                request_id=request_id,
                kind=kind,
                from_status=status,
                to_status=None,
                occurred_at=self._clock.now(),
                actor_id=requester_id,
                requester_id=requester_id,
            ),
        )
        logger.info(
            "request_withdrawn",
            extra={
                "request_id": str(request_id),
                "from_status": status.value,
                "resource_count": resource_count,
            },
        )

    # =====================================================================
    # Helpers
    # =====================================================================

    def _load(self, request_id: UUID) -> ResourceRequestModel:
        model = self._session.get(ResourceRequestModel, request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model
