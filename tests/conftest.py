"""
Pytest fixtures for the lab kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (StaticPool, SAVEPOINT fix)
- A deterministic clock pinned to Monday 2025-01-06 09:00 UTC
- A static lab directory and timetable matching the documented scenarios
- A recording notification sink and captured structured logs
- Service and engine factories wired to all of the above
"""

import json
import logging
from datetime import date, time
from io import StringIO
from typing import Generator

import pytest
from sqlalchemy.orm import Session, sessionmaker

from lab_config.directory import (
    StaticResourceDirectory,
    StaticScheduleProvider,
    sync_component_stock,
)
from lab_config.schema import (
    ComponentDef,
    DepartmentDef,
    LabDirectoryConfig,
    ResourceDef,
)
from lab_kernel.db.engine import build_engine, create_tables
from lab_kernel.domain.clock import DeterministicClock
from lab_kernel.domain.dtos import TransitionEvent
from lab_kernel.domain.lifecycle import FinalAuthority, RequestKind, Role
from lab_kernel.domain.ports import ScheduleEntry
from lab_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from lab_kernel.services.loan_service import LoanService
from lab_kernel.services.request_workflow import RequestWorkflowService, SubmitDetails
from lab_kernel.services.workflow_engine import WorkflowEngine


# =============================================================================
# Directory used across the suite
# =============================================================================
#
# Department 1 (HOD track, authority user 9001): resources 7, 8, 9
# Department 2 (lab coordinator track, authority user 9002): resources 3, 4
# Resource 9 lists no staff, so any lab_staff user may decide for it.

HOD_DEPT = 1
COORD_DEPT = 2
HOD_USER = 9001
COORDINATOR_USER = 9002

STUDENT = 1001
OTHER_STUDENT = 1002
FACULTY_USER = 2001
SUPERVISOR = 2002
STAFF_3 = 501
STAFF_4 = 502
STAFF_7 = 503
STAFF_7_ALT = 504
STAFF_8 = 505

ARDUINO = 101
BREADBOARD = 102
FPGA = 201

# Monday 2025-01-06 is "today" on the deterministic clock.
TODAY = date(2025, 1, 6)
NEXT_MONDAY = date(2025, 1, 13)
NEXT_TUESDAY = date(2025, 1, 14)


TEST_DIRECTORY = LabDirectoryConfig(
    departments=(
        DepartmentDef(HOD_DEPT, "Computer Engineering", FinalAuthority.HOD, HOD_USER),
        DepartmentDef(
            COORD_DEPT, "Electronics", FinalAuthority.LAB_COORDINATOR, COORDINATOR_USER,
        ),
    ),
    resources=(
        ResourceDef(3, "Embedded Systems Lab", COORD_DEPT, (STAFF_3,)),
        ResourceDef(4, "VLSI Lab", COORD_DEPT, (STAFF_4,)),
        ResourceDef(7, "Software Lab 1", HOD_DEPT, (STAFF_7, STAFF_7_ALT)),
        ResourceDef(8, "Networks Lab", HOD_DEPT, (STAFF_8,)),
        ResourceDef(9, "Project Room", HOD_DEPT, ()),
    ),
    schedule=(
        ScheduleEntry(7, 1, time(11, 0), time(13, 0), "SE Practical Batch A"),
        ScheduleEntry(8, 1, time(9, 0), time(17, 0), "Retired timetable", is_active=False),
    ),
    components=(
        ComponentDef(ARDUINO, 3, "Arduino Uno", 20),
        ComponentDef(BREADBOARD, 3, "Breadboard", 40),
        ComponentDef(FPGA, 4, "FPGA Dev Board", 5),
    ),
)


class RecordingSink:
    """NotificationSink that keeps every delivered event."""

    def __init__(self) -> None:
        self.events: list[TransitionEvent] = []

    def deliver(self, event: TransitionEvent) -> None:
        self.events.append(event)

    def types(self) -> list[str]:
        return [e.event_type for e in self.events]


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture lab_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, workflow):
            workflow.submit(...)
            logs = captured_logs()
            assert any(r["message"] == "request_submitted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("lab_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine():
    engine = build_engine("sqlite://")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> sessionmaker[Session]:
    factory = sessionmaker(bind=db_engine, expire_on_commit=False)
    with factory() as session:
        sync_component_stock(session, TEST_DIRECTORY)
        session.commit()
    return factory


@pytest.fixture
def session(session_factory) -> Generator[Session, None, None]:
    s = session_factory()
    yield s
    s.rollback()
    s.close()


# =============================================================================
# Collaborators
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock()


@pytest.fixture
def lab_directory() -> LabDirectoryConfig:
    return TEST_DIRECTORY


@pytest.fixture
def directory() -> StaticResourceDirectory:
    return StaticResourceDirectory(TEST_DIRECTORY)


@pytest.fixture
def schedule() -> StaticScheduleProvider:
    return StaticScheduleProvider.from_config(TEST_DIRECTORY)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


# =============================================================================
# Services
# =============================================================================


@pytest.fixture
def workflow(session, directory, schedule, clock) -> RequestWorkflowService:
    return RequestWorkflowService(session, directory, schedule, clock)


@pytest.fixture
def loans(session, directory, clock) -> LoanService:
    return LoanService(session, directory, clock)


@pytest.fixture
def engine(session_factory, directory, schedule, sink, clock) -> WorkflowEngine:
    return WorkflowEngine(session_factory, directory, schedule, sink=sink, clock=clock)


# =============================================================================
# Submission helpers
# =============================================================================


@pytest.fixture
def submit_booking(workflow):
    """Submit a booking through the service layer with sensible defaults."""

    def _submit(
        resource_ids=(7,),
        role: Role = Role.STUDENT,
        requester_id: int = STUDENT,
        booking_date: date = NEXT_TUESDAY,
        start: time = time(10, 0),
        end: time = time(12, 0),
        purpose: str = "Compiler lab practice",
        supervisor_id: int | None = None,
    ):
        return workflow.submit(
            RequestKind.BOOKING,
            requester_id,
            role,
            list(resource_ids),
            SubmitDetails(
                booking_date=booking_date,
                start_time=start,
                end_time=end,
                purpose=purpose,
                supervisor_id=supervisor_id,
            ),
        )

    return _submit


@pytest.fixture
def submit_loan(workflow):
    """Submit a component loan through the service layer."""

    def _submit(
        items=((ARDUINO, 2),),
        resource_id: int = 3,
        role: Role = Role.FACULTY,
        requester_id: int = FACULTY_USER,
        due_date: date = date(2025, 1, 20),
    ):
        from lab_kernel.domain.dtos import LineItem

        return workflow.submit(
            RequestKind.COMPONENT_LOAN,
            requester_id,
            role,
            [resource_id],
            SubmitDetails(
                due_date=due_date,
                items=tuple(LineItem(c, q) for c, q in items),
            ),
        )

    return _submit
