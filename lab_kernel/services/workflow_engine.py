"""
lab_kernel.services.workflow_engine -- Transactional entry point.

Responsibility:
    The surface the HTTP layer calls.  Each operation opens one session,
    runs one kernel service call inside one transaction, commits, and then
    lets the outbox deliver the transition events it queued.

Architecture position:
    Kernel > Services (outermost).  Composes RequestWorkflowService,
    LoanService, ReconciliationSweeper and the read selectors.

Invariants enforced:
    - One transaction per operation: submit (request plus all decision and
      line item rows), decide (including any aggregate cascade), withdraw,
      each loan operation, and each sweep.
    - A failed operation leaves nothing behind and emits no notification.
    - Log records emitted during an operation carry its correlation id,
      request id and actor id.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, time
from typing import Generator, Iterable, Sequence
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from lab_kernel.db.engine import session_scope
from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import (
    DueLoans,
    ExtensionRequest,
    LineItem,
    ResourceRequest,
    SlotConflict,
    SweepSummary,
)
from lab_kernel.domain.lifecycle import DecisionOutcome, RequestKind, Role
from lab_kernel.domain.ports import NotificationSink, ResourceDirectory, ScheduleProvider
from lab_kernel.domain.time_slots import TimeInterval
from lab_kernel.exceptions import RequestNotFoundError, ValidationError
from lab_kernel.logging_config import LogContext, get_logger
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.services.conflict_detector import ConflictDetector
from lab_kernel.services.loan_service import LoanService
from lab_kernel.services.notifications import TransitionOutbox
from lab_kernel.services.reconciliation_sweeper import ReconciliationSweeper
from lab_kernel.services.request_workflow import RequestWorkflowService, SubmitDetails

logger = get_logger("services.workflow_engine")


class WorkflowEngine:
    """Facade over the kernel services with commit-per-operation semantics.

    Contract:
        Returns frozen DTOs only.  Raises the typed errors of
        ``lab_kernel.exceptions`` unchanged.

    Non-goals:
        Authentication.  Callers pass the already-authenticated user id and
        role.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: ResourceDirectory,
        schedule: ScheduleProvider,
        sink: NotificationSink | None = None,
        clock: Clock | None = None,
        sweep_batch_limit: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._directory = directory
        self._schedule = schedule
        self._clock = clock or SystemClock()
        self._outbox = TransitionOutbox(sink)
        self._sweep_batch_limit = sweep_batch_limit

    @contextmanager
    def _transaction(
        self,
        operation: str,
        request_id: UUID | None = None,
        actor_id: int | None = None,
    ) -> Generator[Session, None, None]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            request_id=request_id,
            actor_id=actor_id,
        ):
            logger.debug("operation_started", extra={"operation": operation})
            with session_scope(self._session_factory) as session:
                self._outbox.attach(session)
                yield session

    # -----------------------------------------------------------------
    # State machine
    # -----------------------------------------------------------------

    def submit(
        self,
        kind: RequestKind,
        requester_id: int,
        requester_role: Role,
        resource_ids: Sequence[int],
        *,
        booking_date: date | None = None,
        start_time: time | None = None,
        end_time: time | None = None,
        purpose: str | None = None,
        due_date: date | None = None,
        items: Iterable[LineItem | tuple[int, int]] = (),
        supervisor_id: int | None = None,
    ) -> ResourceRequest:
        details = SubmitDetails(
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
            purpose=purpose,
            due_date=due_date,
            items=tuple(_as_line_item(i) for i in items),
            supervisor_id=supervisor_id,
        )
        with self._transaction("submit", actor_id=requester_id) as session:
            return self._workflow(session).submit(
                kind, requester_id, requester_role, resource_ids, details,
            )

    def decide(
        self,
        request_id: UUID,
        acting_user_id: int,
        acting_role: Role,
        outcome: DecisionOutcome,
        remarks: str = "",
        resource_id: int | None = None,
    ) -> ResourceRequest:
        with self._transaction("decide", request_id, acting_user_id) as session:
            return self._workflow(session).decide(
                request_id, acting_user_id, acting_role, outcome, remarks, resource_id,
            )

    def withdraw(self, request_id: UUID, requester_id: int) -> None:
        with self._transaction("withdraw", request_id, requester_id) as session:
            self._workflow(session).withdraw(request_id, requester_id)

    # -----------------------------------------------------------------
    # Loans
    # -----------------------------------------------------------------

    def mark_issued(self, request_id: UUID, staff_id: int, acting_role: Role) -> ResourceRequest:
        with self._transaction("mark_issued", request_id, staff_id) as session:
            return self._loans(session).mark_issued(request_id, staff_id, acting_role)

    def request_return(self, request_id: UUID, requester_id: int) -> ResourceRequest:
        with self._transaction("request_return", request_id, requester_id) as session:
            return self._loans(session).request_return(request_id, requester_id)

    def cancel_return(self, request_id: UUID, requester_id: int) -> ResourceRequest:
        with self._transaction("cancel_return", request_id, requester_id) as session:
            return self._loans(session).cancel_return(request_id, requester_id)

    def confirm_return(
        self,
        request_id: UUID,
        staff_id: int,
        acting_role: Role,
        remarks: str = "",
    ) -> ResourceRequest:
        with self._transaction("confirm_return", request_id, staff_id) as session:
            return self._loans(session).confirm_return(
                request_id, staff_id, acting_role, remarks,
            )

    def request_extension(
        self,
        request_id: UUID,
        requester_id: int,
        new_due_date: date,
        reason: str,
    ) -> ExtensionRequest:
        with self._transaction("request_extension", request_id, requester_id) as session:
            return self._loans(session).request_extension(
                request_id, requester_id, new_due_date, reason,
            )

    def decide_extension(
        self,
        request_id: UUID,
        acting_user_id: int,
        acting_role: Role,
        approve: bool,
        remarks: str = "",
    ) -> ExtensionRequest:
        with self._transaction("decide_extension", request_id, acting_user_id) as session:
            return self._loans(session).decide_extension(
                request_id, acting_user_id, acting_role, approve, remarks,
            )

    # -----------------------------------------------------------------
    # Reconciliation
    # -----------------------------------------------------------------

    def sweep(self) -> SweepSummary:
        with self._transaction("sweep") as session:
            return ReconciliationSweeper(
                session, self._clock, batch_limit=self._sweep_batch_limit,
            ).sweep()

    # -----------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------

    def get_request(self, request_id: UUID) -> ResourceRequest:
        with self._transaction("get_request", request_id) as session:
            dto = RequestSelector(session).get(request_id)
        if dto is None:
            raise RequestNotFoundError(str(request_id))
        return dto

    def find_conflicts(
        self,
        resource_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
    ) -> list[SlotConflict]:
        if end_time <= start_time:
            raise ValidationError("End time must be after start time", field="end_time")
        with self._transaction("find_conflicts") as session:
            return ConflictDetector(session, self._schedule).find_conflicts(
                resource_id, booking_date, TimeInterval(start_time, end_time),
            )

    def find_due_loans(self, as_of: date | None = None) -> DueLoans:
        with self._transaction("find_due_loans") as session:
            return RequestSelector(session).due_loans(as_of or self._clock.today())

    # -----------------------------------------------------------------
    # Wiring
    # -----------------------------------------------------------------

    def _workflow(self, session: Session) -> RequestWorkflowService:
        return RequestWorkflowService(session, self._directory, self._schedule, self._clock)

    def _loans(self, session: Session) -> LoanService:
        return LoanService(session, self._directory, self._clock)


def _as_line_item(item: LineItem | tuple[int, int]) -> LineItem:
    if isinstance(item, LineItem):
        return item
    component_id, quantity = item
    return LineItem(component_id=component_id, quantity=quantity)
