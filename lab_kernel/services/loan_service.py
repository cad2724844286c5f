"""
lab_kernel.services.loan_service -- Component loan handover, return and extension.

Responsibility:
    The post-approval life of a component loan: physical issue (with stock
    decrement), return request and its cancellation, confirmed return (with
    stock restore), and the due-date extension sub-workflow that runs while
    the loan is issued.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.
    Only flushes; the caller owns the commit.

Invariants enforced:
    - Issue only from ``approved`` and only once; every line item's stock is
      locked and decremented in the same transaction, or none is.
    - Return request only from ``issued``; confirmation only from
      ``return_requested``; confirmation restores the stock taken at issue.
    - At most one open extension per loan; extensions are opened and decided
      only while issued.  Confirming the return rejects any open extension.
    - Handover, confirmation and extension decisions are resource staff
      only (and, when the directory lists staff, only those users).

Failure modes:
    - AuthorizationError for the wrong role or user.
    - InvalidStateError for the wrong status or an open/missing extension.
    - InsufficientStockError when stock cannot cover the loan.
    - ValidationError for malformed extension requests.
    - RequestNotFoundError for unknown ids.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import ExtensionRequest, ResourceRequest, TransitionEvent
from lab_kernel.domain.lifecycle import (
    ExtensionStatus,
    RequestKind,
    RequestStatus,
    Role,
)
from lab_kernel.domain.ports import ResourceDirectory
from lab_kernel.exceptions import (
    AuthorizationError,
    InsufficientStockError,
    InvalidStateError,
    RequestNotFoundError,
    ValidationError,
)
from lab_kernel.logging_config import get_logger
from lab_kernel.models.extension import ExtensionRequestModel
from lab_kernel.models.inventory import ComponentStockModel
from lab_kernel.models.request import ResourceRequestModel
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.services.notifications import record_event
from lab_kernel.services.transitions import bump_version, move_status

logger = get_logger("services.loan")

DEFAULT_EXTENSION_REJECT_REMARKS = "Extension request rejected"
RETURNED_EXTENSION_REMARKS = "Loan returned before the extension was decided"


class LoanService:
    """Issue, return and extend component loans."""

    def __init__(
        self,
        session: Session,
        directory: ResourceDirectory,
        clock: Clock | None = None,
    ) -> None:
        self._session = session
        self._directory = directory
        self._clock = clock or SystemClock()
        self._selector = RequestSelector(session)

    # -----------------------------------------------------------------
    # Handover
    # -----------------------------------------------------------------

    def mark_issued(
        self,
        request_id: UUID,
        staff_id: int,
        acting_role: Role,
    ) -> ResourceRequest:
        """Record physical handover and take the components out of stock."""
        model = self._load_loan(request_id, "issue")
        self._require_staff(model, staff_id, acting_role, "issue")
        if model.status != RequestStatus.APPROVED.value or model.issued_at is not None:
            raise InvalidStateError("issue", model.status)

        for item in sorted(model.items, key=lambda i: i.component_id):
            stock = self._lock_stock(item.component_id)
            available = stock.quantity_available if stock is not None else 0
            if stock is None or available < item.quantity:
                raise InsufficientStockError(item.component_id, item.quantity, available)
            stock.quantity_available -= item.quantity
        self._session.flush()

        move_status(
            self._session,
            model,
            RequestStatus.ISSUED,
            clock=self._clock,
            operation="issue",
            event_type="loan_issued",
            actor_id=staff_id,
            resource_id=model.resource_id,
            values={"issued_at": self._clock.now(), "issued_by": staff_id},
        )
        logger.info(
            "loan_issued",
            extra={
                "request_id": str(model.id),
                "staff_id": staff_id,
                "line_items": len(model.items),
            },
        )
        return model.to_dto()

    # -----------------------------------------------------------------
    # Return
    # -----------------------------------------------------------------

    def request_return(self, request_id: UUID, requester_id: int) -> ResourceRequest:
        """Borrower asks to hand the components back."""
        model = self._load_loan(request_id, "request return for")
        if model.status != RequestStatus.ISSUED.value:
            raise InvalidStateError("request return for", model.status)
        self._require_requester(model, requester_id, "request a return")

        move_status(
            self._session,
            model,
            RequestStatus.RETURN_REQUESTED,
            clock=self._clock,
            operation="request return for",
            event_type="loan_return_requested",
            actor_id=requester_id,
            values={"return_requested_at": self._clock.now()},
        )
        return model.to_dto()

    def cancel_return(self, request_id: UUID, requester_id: int) -> ResourceRequest:
        """Borrower withdraws a return request; the loan is issued again."""
        model = self._load_loan(request_id, "cancel return for")
        if model.status != RequestStatus.RETURN_REQUESTED.value:
            raise InvalidStateError("cancel return for", model.status)
        self._require_requester(model, requester_id, "cancel a return")

        move_status(
            self._session,
            model,
            RequestStatus.ISSUED,
            clock=self._clock,
            operation="cancel return for",
            event_type="loan_return_cancelled",
            actor_id=requester_id,
            values={"return_requested_at": None},
        )
        return model.to_dto()

    def confirm_return(
        self,
        request_id: UUID,
        staff_id: int,
        acting_role: Role,
        remarks: str = "",
    ) -> ResourceRequest:
        """Staff confirm the components came back; stock is restored."""
        model = self._load_loan(request_id, "confirm return for")
        self._require_staff(model, staff_id, acting_role, "confirm return for")
        if model.status != RequestStatus.RETURN_REQUESTED.value:
            raise InvalidStateError("confirm return for", model.status)

        for item in sorted(model.items, key=lambda i: i.component_id):
            stock = self._lock_stock(item.component_id)
            if stock is None:
                logger.warning(
                    "returned_component_untracked",
                    extra={"request_id": str(model.id), "component_id": item.component_id},
                )
                continue
            stock.quantity_available = min(
                stock.quantity_available + item.quantity, stock.quantity_total,
            )
        self._session.flush()

        extension = self._selector.open_extension(model.id)
        if extension is not None:
            extension.status = ExtensionStatus.REJECTED.value
            extension.decided_by = staff_id
            extension.decided_at = self._clock.now()
            extension.remarks = RETURNED_EXTENSION_REMARKS
            self._session.flush()
            logger.info(
                "extension_closed_on_return",
                extra={"request_id": str(model.id), "extension_id": str(extension.id)},
            )

        move_status(
            self._session,
            model,
            RequestStatus.RETURNED,
            clock=self._clock,
            operation="confirm return for",
            event_type="loan_returned",
            actor_id=staff_id,
            resource_id=model.resource_id,
            values={
                "returned_at": self._clock.now(),
                "returned_by": staff_id,
                "return_remarks": remarks.strip() or None,
            },
        )
        logger.info(
            "loan_returned",
            extra={"request_id": str(model.id), "staff_id": staff_id},
        )
        return model.to_dto()

    # -----------------------------------------------------------------
    # Extensions
    # -----------------------------------------------------------------

    def request_extension(
        self,
        request_id: UUID,
        requester_id: int,
        new_due_date: date,
        reason: str,
    ) -> ExtensionRequest:
        """Open a due-date extension request on an issued loan."""
        model = self._load_loan(request_id, "request an extension for")
        if model.status != RequestStatus.ISSUED.value or model.returned_at is not None:
            raise InvalidStateError("request an extension for", model.status)
        if self._selector.open_extension(model.id) is not None:
            raise InvalidStateError(
                "request an extension for",
                model.status,
                detail="an extension request is already pending",
            )
        self._require_requester(model, requester_id, "request an extension")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required", field="reason")
        if model.due_date is not None and new_due_date <= model.due_date:
            raise ValidationError(
                f"New due date must be after the current due date {model.due_date}",
                field="new_due_date",
            )

        now = self._clock.now()
        extension = ExtensionRequestModel(
            request_id=model.id,
            requested_by=requester_id,
            requested_due_date=new_due_date,
            previous_due_date=model.due_date,
            reason=reason.strip(),
            status=ExtensionStatus.PENDING.value,
            requested_at=now,
        )
        self._session.add(extension)
        self._session.flush()

        self._emit(model, "extension_requested", requester_id, now, {
            "requested_due_date": new_due_date.isoformat(),
        })
        logger.info(
            "extension_requested",
            extra={
                "request_id": str(model.id),
                "extension_id": str(extension.id),
                "requested_due_date": new_due_date.isoformat(),
            },
        )
        return extension.to_dto()

    def decide_extension(
        self,
        request_id: UUID,
        acting_user_id: int,
        acting_role: Role,
        approve: bool,
        remarks: str = "",
    ) -> ExtensionRequest:
        """Close the open extension: move the due date or leave it."""
        model = self._load_loan(request_id, "decide an extension for")
        self._require_staff(model, acting_user_id, acting_role, "decide an extension for")
        if model.status != RequestStatus.ISSUED.value:
            raise InvalidStateError("decide an extension for", model.status)
        extension = self._selector.open_extension(model.id)
        if extension is None:
            raise InvalidStateError(
                "decide an extension for",
                model.status,
                detail="no extension request is pending",
            )

        now = self._clock.now()
        extension.decided_by = acting_user_id
        extension.decided_at = now
        if approve:
            extension.status = ExtensionStatus.APPROVED.value
            extension.remarks = remarks.strip() or None
            self._session.flush()
            bump_version(
                self._session,
                model,
                clock=self._clock,
                operation="extend",
                values={"due_date": extension.requested_due_date},
            )
        else:
            extension.status = ExtensionStatus.REJECTED.value
            extension.remarks = remarks.strip() or DEFAULT_EXTENSION_REJECT_REMARKS
            self._session.flush()

        event_type = "extension_approved" if approve else "extension_rejected"
        self._emit(model, event_type, acting_user_id, now, {
            "requested_due_date": extension.requested_due_date.isoformat(),
        })
        logger.info(
            event_type,
            extra={
                "request_id": str(model.id),
                "extension_id": str(extension.id),
                "due_date": model.due_date.isoformat() if model.due_date else None,
            },
        )
        return extension.to_dto()

    # -----------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------

    def _load_loan(self, request_id: UUID, operation: str) -> ResourceRequestModel:
        model = self._session.get(ResourceRequestModel, request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        if model.kind != RequestKind.COMPONENT_LOAN.value:
            raise InvalidStateError(
                operation, model.status, detail="only component loans support this",
            )
        return model

    def _lock_stock(self, component_id: int) -> ComponentStockModel | None:
        return self._session.execute(
            select(ComponentStockModel)
            .where(ComponentStockModel.component_id == component_id)
            .with_for_update()
        ).scalar_one_or_none()

    def _require_staff(
        self,
        model: ResourceRequestModel,
        user_id: int,
        acting_role: Role,
        operation: str,
    ) -> None:
        if acting_role is not Role.LAB_STAFF:
            raise AuthorizationError(
                f"Only {Role.LAB_STAFF.value} may {operation} a loan, "
                f"not {acting_role.value}",
                required_role=Role.LAB_STAFF.value,
                step=model.status,
            )
        ownership = self._directory.lookup(model.resource_id)
        if ownership is not None and ownership.staff_ids and user_id not in ownership.staff_ids:
            raise AuthorizationError(
                f"User {user_id} is not staff of resource {model.resource_id}",
                required_role=Role.LAB_STAFF.value,
                step=model.status,
            )

    def _require_requester(
        self,
        model: ResourceRequestModel,
        user_id: int,
        action: str,
    ) -> None:
        if model.requester_id != user_id:
            raise AuthorizationError(
                f"Only the borrower may {action}",
                step=model.status,
            )

    def _emit(
        self,
        model: ResourceRequestModel,
        event_type: str,
        actor_id: int,
        occurred_at,
        detail: dict[str, str],
    ) -> None:
        record_event(
            self._session,
            TransitionEvent(
                event_type=event_type,
                request_id=model.id,
                kind=RequestKind(model.kind),
                from_status=RequestStatus(model.status),
                to_status=RequestStatus(model.status),
                occurred_at=occurred_at,
                actor_id=actor_id,
                resource_id=model.resource_id,
                requester_id=model.requester_id,
                detail=detail,
            ),
        )
