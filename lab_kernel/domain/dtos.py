"""
Domain records (``lab_kernel.domain.dtos``).

Responsibility
--------------
Immutable snapshots that cross the service boundary: requests, their
decisions and line items, extension requests, slot conflicts, transition
events and sweep results.  ORM models convert to these via ``to_dto()``;
callers never receive live ORM objects.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from uuid import UUID

from lab_kernel.domain.lifecycle import (
    ExtensionStatus,
    FinalAuthority,
    RequestKind,
    RequestStatus,
    ResourceDecisionStatus,
    Role,
)
from lab_kernel.domain.time_slots import TimeInterval


# =========================================================================
# Requests
# =========================================================================


@dataclass(frozen=True)
class LineItem:
    """One component line of a loan."""

    component_id: int
    quantity: int


@dataclass(frozen=True)
class StepDecision:
    """Who signed off a chain step, when, and with what remarks."""

    approver_id: int
    decided_at: datetime
    remarks: str = ""


@dataclass(frozen=True)
class ResourceDecision:
    """Per-resource sub-decision of a multi-resource request."""

    resource_id: int
    status: ResourceDecisionStatus
    approver_id: int | None = None
    decided_at: datetime | None = None
    remarks: str = ""


@dataclass(frozen=True)
class ResourceRequest:
    """Immutable snapshot of a request.

    Exactly one of ``resource_id`` / ``resource_ids`` is populated,
    matching ``is_multi``.
    """

    id: UUID
    kind: RequestKind
    requester_id: int
    requester_role: Role
    status: RequestStatus
    is_multi: bool
    department_id: int
    final_authority: FinalAuthority
    final_authority_user_id: int | None
    created_at: datetime
    updated_at: datetime
    version: int
    resource_id: int | None = None
    resource_ids: tuple[int, ...] = ()
    supervisor_id: int | None = None
    booking_date: date | None = None
    start_time: time | None = None
    end_time: time | None = None
    purpose: str | None = None
    due_date: date | None = None
    items: tuple[LineItem, ...] = ()
    faculty_decision: StepDecision | None = None
    resource_staff_decision: StepDecision | None = None
    final_decision: StepDecision | None = None
    resource_staff_decided_at: datetime | None = None
    resource_decisions: tuple[ResourceDecision, ...] = ()
    rejection_reason: str | None = None
    rejected_step: RequestStatus | None = None
    rejected_at: datetime | None = None
    issued_at: datetime | None = None
    issued_by: int | None = None
    return_requested_at: datetime | None = None
    returned_at: datetime | None = None
    return_remarks: str | None = None

    @property
    def resources(self) -> tuple[int, ...]:
        """All resource ids, in submission order."""
        if self.is_multi:
            return self.resource_ids
        return (self.resource_id,) if self.resource_id is not None else ()

    @property
    def interval(self) -> TimeInterval | None:
        if self.start_time is None or self.end_time is None:
            return None
        return TimeInterval(self.start_time, self.end_time)

    def decision_for(self, resource_id: int) -> ResourceDecision | None:
        for d in self.resource_decisions:
            if d.resource_id == resource_id:
                return d
        return None


@dataclass(frozen=True)
class ExtensionRequest:
    """Due-date extension request on an issued loan."""

    id: UUID
    request_id: UUID
    requested_by: int
    requested_due_date: date
    previous_due_date: date
    reason: str
    status: ExtensionStatus
    requested_at: datetime
    decided_by: int | None = None
    decided_at: datetime | None = None
    remarks: str | None = None


# =========================================================================
# Conflicts
# =========================================================================


class ConflictSource(str, Enum):
    """What holds an overlapping slot."""

    REQUEST = "request"
    SCHEDULE = "schedule"


@dataclass(frozen=True)
class SlotConflict:
    """One reservation or timetable entry that overlaps a requested slot."""

    source: ConflictSource
    resource_id: int
    interval: TimeInterval
    request_id: UUID | None = None
    status: RequestStatus | None = None
    label: str | None = None

    def describe(self) -> str:
        if self.source is ConflictSource.SCHEDULE:
            name = self.label or "timetable entry"
            return f"{name} {self.interval} on resource {self.resource_id}"
        status = self.status.value if self.status is not None else "active"
        return (
            f"request {self.request_id} ({status}) {self.interval} "
            f"on resource {self.resource_id}"
        )


# =========================================================================
# Events and batch results
# =========================================================================


@dataclass(frozen=True)
class TransitionEvent:
    """Outbound notification that a request changed state.

    Emitted only after the transaction that made the change commits.
    """

    event_type: str
    request_id: UUID
    kind: RequestKind
    to_status: RequestStatus | None
    occurred_at: datetime
    actor_id: int | None = None
    from_status: RequestStatus | None = None
    resource_id: int | None = None
    requester_id: int | None = None
    detail: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class SweepError:
    """One request the sweeper failed to repair."""

    request_id: UUID
    code: str
    message: str


@dataclass(frozen=True)
class SweepSummary:
    """Counts from one reconciliation pass."""

    examined: int = 0
    moved_to_final_authority: int = 0
    auto_approved: int = 0
    rejected: int = 0
    unchanged: int = 0
    errors: tuple[SweepError, ...] = ()

    @property
    def repaired(self) -> int:
        return self.moved_to_final_authority + self.auto_approved + self.rejected


@dataclass(frozen=True)
class DueLoan:
    """An issued loan that is due soon or overdue."""

    request_id: UUID
    requester_id: int
    resource_id: int
    due_date: date
    days_overdue: int


@dataclass(frozen=True)
class DueLoans:
    """Loans a reminder job should chase, as of one date."""

    as_of: date
    upcoming: tuple[DueLoan, ...] = ()
    overdue: tuple[DueLoan, ...] = ()
