"""
Tests for lab_kernel.services.loan_service -- issue, return and extensions.

Loans here are faculty loans from lab 3 (lab coordinator department), so
they reach approved after the resource staff and coordinator sign off.
"""

from datetime import date, time

import pytest
from sqlalchemy import select

from lab_kernel.domain.dtos import LineItem
from lab_kernel.domain.lifecycle import (
    DecisionOutcome,
    ExtensionStatus,
    RequestKind,
    RequestStatus,
    Role,
)
from lab_kernel.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientStockError,
    InvalidStateError,
    ValidationError,
)
from lab_kernel.models.inventory import ComponentStockModel
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.models.extension import ExtensionRequestModel
from lab_kernel.services.loan_service import (
    DEFAULT_EXTENSION_REJECT_REMARKS,
    RETURNED_EXTENSION_REMARKS,
)
from lab_kernel.services.request_workflow import SubmitDetails

from tests.conftest import (
    ARDUINO,
    BREADBOARD,
    COORDINATOR_USER,
    FACULTY_USER,
    FPGA,
    STAFF_3,
    STAFF_4,
    STUDENT,
)

APPROVE = DecisionOutcome.APPROVE
DUE = date(2025, 1, 20)


def _available(session, component_id):
    return session.execute(
        select(ComponentStockModel.quantity_available)
        .where(ComponentStockModel.component_id == component_id)
    ).scalar_one()


@pytest.fixture
def approve_loan(workflow):
    def _approve(req):
        workflow.decide(req.id, STAFF_3, Role.LAB_STAFF, APPROVE)
        return workflow.decide(req.id, COORDINATOR_USER, Role.LAB_COORDINATOR, APPROVE)

    return _approve


@pytest.fixture
def approved_loan(submit_loan, approve_loan):
    return approve_loan(submit_loan(items=((ARDUINO, 2), (BREADBOARD, 5))))


@pytest.fixture
def issued_loan(loans, approved_loan):
    return loans.mark_issued(approved_loan.id, STAFF_3, Role.LAB_STAFF)


# =============================================================================
# Submission
# =============================================================================


class TestLoanSubmission:
    def test_loan_snapshot(self, submit_loan):
        req = submit_loan(items=((ARDUINO, 2), (BREADBOARD, 1)))
        assert req.kind is RequestKind.COMPONENT_LOAN
        assert req.status is RequestStatus.PENDING_RESOURCE_STAFF
        assert req.due_date == DUE
        assert req.booking_date is None
        assert req.items == (LineItem(ARDUINO, 2), LineItem(BREADBOARD, 1))

    def test_duplicate_components_merged(self, submit_loan):
        req = submit_loan(items=((ARDUINO, 2), (ARDUINO, 3)))
        assert req.items == (LineItem(ARDUINO, 5),)

    def test_component_must_belong_to_lab(self, submit_loan):
        with pytest.raises(ValidationError, match="not held by resource 3"):
            submit_loan(items=((FPGA, 1),))

    def test_unknown_component(self, submit_loan):
        with pytest.raises(ValidationError):
            submit_loan(items=((999, 1),))

    @pytest.mark.parametrize("quantity", [0, -1])
    def test_quantity_must_be_positive(self, submit_loan, quantity):
        with pytest.raises(ValidationError) as exc_info:
            submit_loan(items=((ARDUINO, quantity),))
        assert exc_info.value.field == "items"

    def test_items_required(self, submit_loan):
        with pytest.raises(ValidationError):
            submit_loan(items=())

    def test_due_date_not_in_past(self, submit_loan):
        with pytest.raises(ValidationError) as exc_info:
            submit_loan(due_date=date(2025, 1, 5))
        assert exc_info.value.field == "due_date"

    def test_due_date_today_allowed(self, submit_loan):
        req = submit_loan(due_date=date(2025, 1, 6))
        assert req.due_date == date(2025, 1, 6)

    def test_loan_from_single_lab_only(self, workflow):
        with pytest.raises(ValidationError):
            workflow.submit(
                RequestKind.COMPONENT_LOAN,
                FACULTY_USER,
                Role.FACULTY,
                [3, 4],
                SubmitDetails(due_date=DUE, items=(LineItem(ARDUINO, 1),)),
            )


# =============================================================================
# Issue
# =============================================================================


class TestMarkIssued:
    def test_issue_decrements_stock(self, session, loans, approved_loan, clock):
        req = loans.mark_issued(approved_loan.id, STAFF_3, Role.LAB_STAFF)

        assert req.status is RequestStatus.ISSUED
        assert req.issued_at == clock.now()
        assert req.issued_by == STAFF_3
        assert _available(session, ARDUINO) == 18
        assert _available(session, BREADBOARD) == 35

    def test_issue_only_once(self, loans, issued_loan):
        with pytest.raises(InvalidStateError):
            loans.mark_issued(issued_loan.id, STAFF_3, Role.LAB_STAFF)

    def test_issue_requires_approval(self, loans, submit_loan):
        req = submit_loan()
        with pytest.raises(InvalidStateError):
            loans.mark_issued(req.id, STAFF_3, Role.LAB_STAFF)

    @pytest.mark.parametrize("role", [Role.FACULTY, Role.LAB_COORDINATOR, Role.ADMIN])
    def test_issue_requires_staff_role(self, loans, approved_loan, role):
        with pytest.raises(AuthorizationError):
            loans.mark_issued(approved_loan.id, STAFF_3, role)

    def test_issue_requires_staff_of_the_lab(self, loans, approved_loan):
        with pytest.raises(AuthorizationError):
            loans.mark_issued(approved_loan.id, STAFF_4, Role.LAB_STAFF)

    def test_insufficient_stock(self, session, loans, submit_loan, approve_loan):
        req = approve_loan(submit_loan(items=((ARDUINO, 25),)))

        with pytest.raises(InsufficientStockError) as exc_info:
            loans.mark_issued(req.id, STAFF_3, Role.LAB_STAFF)

        err = exc_info.value
        assert isinstance(err, ConflictError)
        assert (err.component_id, err.requested, err.available) == (ARDUINO, 25, 20)
        assert _available(session, ARDUINO) == 20

    def test_bookings_cannot_be_issued(self, loans, submit_booking):
        booking = submit_booking(resource_ids=(3,), role=Role.FACULTY, requester_id=FACULTY_USER)
        with pytest.raises(InvalidStateError, match="only component loans"):
            loans.mark_issued(booking.id, STAFF_3, Role.LAB_STAFF)


# =============================================================================
# Return
# =============================================================================


class TestReturn:
    def test_return_round_trip(self, session, loans, issued_loan, clock):
        clock.advance_days(3)
        req = loans.request_return(issued_loan.id, FACULTY_USER)
        assert req.status is RequestStatus.RETURN_REQUESTED
        assert req.return_requested_at == clock.now()

        clock.advance(3600)
        req = loans.confirm_return(issued_loan.id, STAFF_3, Role.LAB_STAFF, "All intact")
        assert req.status is RequestStatus.RETURNED
        assert req.returned_at == clock.now()
        assert req.return_remarks == "All intact"
        assert _available(session, ARDUINO) == 20
        assert _available(session, BREADBOARD) == 40

    def test_return_requested_twice(self, loans, issued_loan):
        loans.request_return(issued_loan.id, FACULTY_USER)
        with pytest.raises(InvalidStateError):
            loans.request_return(issued_loan.id, FACULTY_USER)

    def test_only_borrower_requests_return(self, loans, issued_loan):
        with pytest.raises(AuthorizationError):
            loans.request_return(issued_loan.id, STUDENT)

    def test_cancel_return(self, loans, issued_loan):
        loans.request_return(issued_loan.id, FACULTY_USER)
        req = loans.cancel_return(issued_loan.id, FACULTY_USER)
        assert req.status is RequestStatus.ISSUED
        assert req.return_requested_at is None

    def test_cancel_without_return_request(self, loans, issued_loan):
        with pytest.raises(InvalidStateError):
            loans.cancel_return(issued_loan.id, FACULTY_USER)

    def test_confirm_requires_return_request(self, loans, issued_loan):
        with pytest.raises(InvalidStateError):
            loans.confirm_return(issued_loan.id, STAFF_3, Role.LAB_STAFF)

    def test_confirm_requires_staff(self, loans, issued_loan):
        loans.request_return(issued_loan.id, FACULTY_USER)
        with pytest.raises(AuthorizationError):
            loans.confirm_return(issued_loan.id, FACULTY_USER, Role.FACULTY)


class TestReturnedIsTerminal:
    @pytest.fixture
    def returned_loan(self, loans, issued_loan):
        loans.request_return(issued_loan.id, FACULTY_USER)
        return loans.confirm_return(issued_loan.id, STAFF_3, Role.LAB_STAFF)

    def test_no_decide(self, workflow, returned_loan):
        with pytest.raises(InvalidStateError):
            workflow.decide(returned_loan.id, STAFF_3, Role.LAB_STAFF, APPROVE)

    def test_no_withdraw(self, workflow, returned_loan):
        with pytest.raises(InvalidStateError):
            workflow.withdraw(returned_loan.id, FACULTY_USER)

    def test_no_extension(self, loans, returned_loan):
        with pytest.raises(InvalidStateError):
            loans.request_extension(returned_loan.id, FACULTY_USER, date(2025, 2, 1), "More time")

    def test_no_second_return(self, loans, returned_loan):
        with pytest.raises(InvalidStateError):
            loans.request_return(returned_loan.id, FACULTY_USER)


class TestWithdrawalBoundary:
    def test_pending_loan_can_be_withdrawn(self, workflow, submit_loan):
        req = submit_loan()
        workflow.withdraw(req.id, FACULTY_USER)

    def test_approved_loan_cannot_be_withdrawn(self, workflow, approved_loan):
        with pytest.raises(InvalidStateError):
            workflow.withdraw(approved_loan.id, FACULTY_USER)

    def test_issued_loan_cannot_be_withdrawn(self, workflow, issued_loan):
        with pytest.raises(InvalidStateError):
            workflow.withdraw(issued_loan.id, FACULTY_USER)


# =============================================================================
# Extensions
# =============================================================================


class TestExtensions:
    def test_request_extension(self, loans, issued_loan, clock):
        ext = loans.request_extension(
            issued_loan.id, FACULTY_USER, date(2025, 1, 27), " Project demo slipped ",
        )
        assert ext.status is ExtensionStatus.PENDING
        assert ext.previous_due_date == DUE
        assert ext.requested_due_date == date(2025, 1, 27)
        assert ext.reason == "Project demo slipped"
        assert ext.requested_at == clock.now()

    def test_one_open_extension(self, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")
        with pytest.raises(InvalidStateError, match="already pending"):
            loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 28), "Demo")

    def test_extension_needs_issued_loan(self, loans, approved_loan):
        with pytest.raises(InvalidStateError):
            loans.request_extension(approved_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")

    def test_only_borrower_requests_extension(self, loans, issued_loan):
        with pytest.raises(AuthorizationError):
            loans.request_extension(issued_loan.id, STUDENT, date(2025, 1, 27), "Demo")

    def test_reason_required(self, loans, issued_loan):
        with pytest.raises(ValidationError) as exc_info:
            loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), " ")
        assert exc_info.value.field == "reason"

    @pytest.mark.parametrize("new_due", [date(2025, 1, 20), date(2025, 1, 10)])
    def test_new_due_date_after_current(self, loans, issued_loan, new_due):
        with pytest.raises(ValidationError) as exc_info:
            loans.request_extension(issued_loan.id, FACULTY_USER, new_due, "Demo")
        assert exc_info.value.field == "new_due_date"

    def test_approve_moves_due_date(self, session, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")
        ext = loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, True, "Fine")

        assert ext.status is ExtensionStatus.APPROVED
        assert ext.decided_by == STAFF_3
        assert ext.remarks == "Fine"
        req = RequestSelector(session).get(issued_loan.id)
        assert req.due_date == date(2025, 1, 27)
        assert req.status is RequestStatus.ISSUED
        assert req.version == issued_loan.version + 1

    def test_reject_keeps_due_date(self, session, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")
        ext = loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, False)

        assert ext.status is ExtensionStatus.REJECTED
        assert ext.remarks == DEFAULT_EXTENSION_REJECT_REMARKS
        assert RequestSelector(session).get(issued_loan.id).due_date == DUE

    def test_decide_without_open_extension(self, loans, issued_loan):
        with pytest.raises(InvalidStateError, match="no extension request is pending"):
            loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, True)

    def test_decide_requires_staff(self, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")
        with pytest.raises(AuthorizationError):
            loans.decide_extension(
                issued_loan.id, COORDINATOR_USER, Role.LAB_COORDINATOR, True,
            )

    def test_new_extension_after_decision(self, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")
        loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, False, "No")
        ext = loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 24), "Demo")
        assert ext.status is ExtensionStatus.PENDING

    def test_extension_while_return_requested(self, loans, issued_loan):
        loans.request_return(issued_loan.id, FACULTY_USER)
        with pytest.raises(InvalidStateError):
            loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 1, 27), "Demo")

    def test_decide_while_return_requested(self, session, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 2, 1), "Demo")
        loans.request_return(issued_loan.id, FACULTY_USER)
        with pytest.raises(InvalidStateError):
            loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, True)
        assert RequestSelector(session).get(issued_loan.id).due_date == DUE

    def test_decide_after_cancelled_return(self, loans, issued_loan):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 2, 1), "Demo")
        loans.request_return(issued_loan.id, FACULTY_USER)
        loans.cancel_return(issued_loan.id, FACULTY_USER)
        ext = loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, True)
        assert ext.status is ExtensionStatus.APPROVED

    def test_confirm_return_closes_open_extension(self, session, loans, issued_loan, clock):
        loans.request_extension(issued_loan.id, FACULTY_USER, date(2025, 2, 1), "Demo")
        loans.request_return(issued_loan.id, FACULTY_USER)
        clock.advance(60)
        loans.confirm_return(issued_loan.id, STAFF_3, Role.LAB_STAFF)

        ext = session.scalars(
            select(ExtensionRequestModel)
            .where(ExtensionRequestModel.request_id == issued_loan.id)
        ).one()
        assert ext.status == ExtensionStatus.REJECTED.value
        assert ext.remarks == RETURNED_EXTENSION_REMARKS
        assert ext.decided_by == STAFF_3
        assert ext.decided_at == clock.now()

        with pytest.raises(InvalidStateError):
            loans.decide_extension(issued_loan.id, STAFF_3, Role.LAB_STAFF, True)
        req = RequestSelector(session).get(issued_loan.id)
        assert req.status is RequestStatus.RETURNED
        assert req.due_date == DUE


# =============================================================================
# Due loans
# =============================================================================


class TestDueLoans:
    def test_upcoming_and_overdue(self, session, loans, submit_loan, approve_loan):
        soon = approve_loan(submit_loan(items=((ARDUINO, 1),), due_date=date(2025, 1, 7)))
        later = approve_loan(submit_loan(items=((BREADBOARD, 1),), due_date=date(2025, 1, 30)))
        loans.mark_issued(soon.id, STAFF_3, Role.LAB_STAFF)
        loans.mark_issued(later.id, STAFF_3, Role.LAB_STAFF)

        selector = RequestSelector(session)

        today = selector.due_loans(date(2025, 1, 6))
        assert [loan.request_id for loan in today.upcoming] == [soon.id]
        assert today.overdue == ()

        later_view = selector.due_loans(date(2025, 1, 10))
        assert [loan.request_id for loan in later_view.overdue] == [soon.id]
        assert later_view.overdue[0].days_overdue == 3
        assert later_view.upcoming == ()

    def test_unissued_loans_not_listed(self, session, submit_loan, approve_loan):
        approve_loan(submit_loan(due_date=date(2025, 1, 7)))
        due = RequestSelector(session).due_loans(date(2025, 1, 10))
        assert due.upcoming == () and due.overdue == ()

    def test_return_requested_loans_still_listed(self, session, loans, submit_loan, approve_loan):
        loan = approve_loan(submit_loan(items=((ARDUINO, 1),), due_date=date(2025, 1, 7)))
        loans.mark_issued(loan.id, STAFF_3, Role.LAB_STAFF)
        loans.request_return(loan.id, FACULTY_USER)

        due = RequestSelector(session).due_loans(date(2025, 1, 9))
        assert [d.request_id for d in due.overdue] == [loan.id]

        loans.confirm_return(loan.id, STAFF_3, Role.LAB_STAFF)
        assert RequestSelector(session).due_loans(date(2025, 1, 9)).overdue == ()
