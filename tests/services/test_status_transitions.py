"""
Tests for lab_kernel.services.transitions -- the guarded status write.
"""

import pytest
from sqlalchemy import update

from lab_kernel.domain.lifecycle import (
    DecisionOutcome,
    RequestStatus,
    ResourceDecisionStatus,
    Role,
)
from lab_kernel.exceptions import InvalidStateError, StaleStatusError
from lab_kernel.models.request import ResourceDecisionModel, ResourceRequestModel
from lab_kernel.services.aggregator import MultiResourceAggregator
from lab_kernel.services.notifications import pending_events
from lab_kernel.services.transitions import bump_version, move_status

from tests.conftest import FACULTY_USER


@pytest.fixture
def pending_model(session, submit_booking):
    req = submit_booking(role=Role.FACULTY, requester_id=FACULTY_USER)
    return session.get(ResourceRequestModel, req.id)


def test_move_status_bumps_version_and_records_event(session, clock, pending_model):
    clock.advance(30)
    previous = move_status(
        session,
        pending_model,
        RequestStatus.PENDING_FINAL_AUTHORITY,
        clock=clock,
        operation="approve",
        event_type="request_forwarded_to_final_authority",
        actor_id=42,
    )

    assert previous is RequestStatus.PENDING_RESOURCE_STAFF
    assert pending_model.status == RequestStatus.PENDING_FINAL_AUTHORITY.value
    assert pending_model.version == 2
    assert pending_model.updated_at == clock.now()

    event = pending_events(session)[-1]
    assert event.event_type == "request_forwarded_to_final_authority"
    assert event.from_status is RequestStatus.PENDING_RESOURCE_STAFF
    assert event.to_status is RequestStatus.PENDING_FINAL_AUTHORITY
    assert event.actor_id == 42
    assert event.requester_id == FACULTY_USER


def test_illegal_edge_rejected(session, clock, pending_model):
    with pytest.raises(InvalidStateError):
        move_status(
            session,
            pending_model,
            RequestStatus.ISSUED,
            clock=clock,
            operation="issue",
            event_type="loan_issued",
        )
    assert pending_model.version == 1


def test_concurrent_writer_detected(session, clock, pending_model):
    # Another writer rejects the request behind this session's back.
    session.execute(
        update(ResourceRequestModel)
        .where(ResourceRequestModel.id == pending_model.id)
        .values(status=RequestStatus.REJECTED.value)
        .execution_options(synchronize_session=False)
    )
    assert pending_model.status == RequestStatus.PENDING_RESOURCE_STAFF.value

    with pytest.raises(StaleStatusError) as exc_info:
        move_status(
            session,
            pending_model,
            RequestStatus.PENDING_FINAL_AUTHORITY,
            clock=clock,
            operation="approve",
            event_type="request_forwarded_to_final_authority",
        )
    assert exc_info.value.code == "STALE_STATUS"
    assert exc_info.value.expected_status == RequestStatus.PENDING_RESOURCE_STAFF.value


def test_bump_version_guards_status(session, clock, pending_model):
    bump_version(session, pending_model, clock=clock, operation="touch", values={"purpose": "Updated"})
    assert pending_model.version == 2
    assert pending_model.purpose == "Updated"

    session.execute(
        update(ResourceRequestModel)
        .where(ResourceRequestModel.id == pending_model.id)
        .values(status=RequestStatus.REJECTED.value)
        .execution_options(synchronize_session=False)
    )
    with pytest.raises(StaleStatusError):
        bump_version(session, pending_model, clock=clock, operation="touch")


def test_leg_decision_guards_pending_status(session, clock, submit_booking):
    req = submit_booking(resource_ids=(7, 8), role=Role.FACULTY, requester_id=FACULTY_USER)
    model = session.get(ResourceRequestModel, req.id)
    leg = model.decision_for(7)

    # Another staff member approves lab 7 first.
    session.execute(
        update(ResourceDecisionModel)
        .where(ResourceDecisionModel.id == leg.id)
        .values(status=ResourceDecisionStatus.APPROVED.value, approver_id=77)
        .execution_options(synchronize_session=False)
    )
    assert leg.status == ResourceDecisionStatus.PENDING.value

    with pytest.raises(StaleStatusError) as exc_info:
        MultiResourceAggregator(session, clock).record_decision(
            model, 7, DecisionOutcome.REJECT, 78, "Lab closed",
        )
    assert exc_info.value.request_id == str(req.id)

    session.expire(leg)
    assert leg.status == ResourceDecisionStatus.APPROVED.value
    assert leg.approver_id == 77


def test_leg_decision_written(session, clock, submit_booking):
    req = submit_booking(resource_ids=(7, 8), role=Role.FACULTY, requester_id=FACULTY_USER)
    model = session.get(ResourceRequestModel, req.id)

    leg = MultiResourceAggregator(session, clock).record_decision(
        model, 8, DecisionOutcome.APPROVE, 78,
    )
    assert leg.status == ResourceDecisionStatus.APPROVED.value
    assert leg.approver_id == 78
    assert leg.decided_at == clock.now()
