"""
Request lifecycle types (``lab_kernel.domain.lifecycle``).

Responsibility
--------------
Closed enumerations for roles, request kinds and every status a request,
resource decision or extension can hold, plus the transition tables that
define the only legal status moves.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Transitions: ``TRANSITIONS_BY_KIND`` lists every legal edge per request
  kind.  Terminal states have no outgoing edges.
* Bookings terminate at ``approved``; only component loans continue into
  ``issued``, ``return_requested`` and ``returned``.
* Every enum member is covered by each lookup table; tests assert it.
"""

from __future__ import annotations

from enum import Enum


# =========================================================================
# Roles and kinds
# =========================================================================


class Role(str, Enum):
    """Institutional roles that submit or decide requests."""

    STUDENT = "student"
    FACULTY = "faculty"
    LAB_STAFF = "lab_staff"
    OTHERS = "others"
    TNP = "tnp"
    HOD = "hod"
    LAB_COORDINATOR = "lab_coordinator"
    ADMIN = "admin"


class RequestKind(str, Enum):
    """What a request asks for."""

    BOOKING = "booking"
    COMPONENT_LOAN = "component_loan"


class FinalAuthority(str, Enum):
    """Which authority gives a department's final sign-off."""

    HOD = "hod"
    LAB_COORDINATOR = "lab_coordinator"

    @property
    def role(self) -> Role:
        return _AUTHORITY_ROLE[self]

    @property
    def label(self) -> str:
        return _AUTHORITY_LABEL[self]


_AUTHORITY_ROLE: dict[FinalAuthority, Role] = {
    FinalAuthority.HOD: Role.HOD,
    FinalAuthority.LAB_COORDINATOR: Role.LAB_COORDINATOR,
}

_AUTHORITY_LABEL: dict[FinalAuthority, str] = {
    FinalAuthority.HOD: "HOD",
    FinalAuthority.LAB_COORDINATOR: "Lab Coordinator",
}


# =========================================================================
# Request status lifecycle
# =========================================================================


class RequestStatus(str, Enum):
    """Primary request lifecycle states."""

    PENDING_FACULTY = "pending_faculty"
    PENDING_RESOURCE_STAFF = "pending_resource_staff"
    PENDING_FINAL_AUTHORITY = "pending_final_authority"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    RETURN_REQUESTED = "return_requested"
    RETURNED = "returned"


_APPROVAL_EDGES: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING_FACULTY: frozenset({
        RequestStatus.PENDING_RESOURCE_STAFF,
        RequestStatus.REJECTED,
    }),
    RequestStatus.PENDING_RESOURCE_STAFF: frozenset({
        RequestStatus.PENDING_FINAL_AUTHORITY,
        # lab-coordinator track: resource staff sign-off is final
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.PENDING_FINAL_AUTHORITY: frozenset({
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
    }),
    RequestStatus.REJECTED: frozenset(),
}

BOOKING_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    **_APPROVAL_EDGES,
    RequestStatus.APPROVED: frozenset(),
}

LOAN_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    **_APPROVAL_EDGES,
    RequestStatus.APPROVED: frozenset({RequestStatus.ISSUED}),
    RequestStatus.ISSUED: frozenset({RequestStatus.RETURN_REQUESTED}),
    RequestStatus.RETURN_REQUESTED: frozenset({
        RequestStatus.RETURNED,
        # borrower cancels the return request
        RequestStatus.ISSUED,
    }),
    RequestStatus.RETURNED: frozenset(),
}

TRANSITIONS_BY_KIND: dict[RequestKind, dict[RequestStatus, frozenset[RequestStatus]]] = {
    RequestKind.BOOKING: BOOKING_TRANSITIONS,
    RequestKind.COMPONENT_LOAN: LOAN_TRANSITIONS,
}

TERMINAL_STATUSES: dict[RequestKind, frozenset[RequestStatus]] = {
    RequestKind.BOOKING: frozenset({RequestStatus.APPROVED, RequestStatus.REJECTED}),
    RequestKind.COMPONENT_LOAN: frozenset({RequestStatus.REJECTED, RequestStatus.RETURNED}),
}

PENDING_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.PENDING_FACULTY,
    RequestStatus.PENDING_RESOURCE_STAFF,
    RequestStatus.PENDING_FINAL_AUTHORITY,
})

# Statuses whose bookings hold their slot against new submissions.
BLOCKING_STATUSES: frozenset[RequestStatus] = PENDING_STATUSES | {RequestStatus.APPROVED}

# Withdrawal is only possible before anything is physically handed over.
WITHDRAWABLE_STATUSES: frozenset[RequestStatus] = PENDING_STATUSES


def can_transition(
    kind: RequestKind,
    current: RequestStatus,
    target: RequestStatus,
) -> bool:
    """Whether ``current -> target`` is a legal edge for the request kind."""
    return target in TRANSITIONS_BY_KIND[kind].get(current, frozenset())


def is_terminal(kind: RequestKind, status: RequestStatus) -> bool:
    return status in TERMINAL_STATUSES[kind]


# =========================================================================
# Decisions
# =========================================================================


class DecisionOutcome(str, Enum):
    """What an approver decided at one step."""

    APPROVE = "approve"
    REJECT = "reject"


class ResourceDecisionStatus(str, Enum):
    """Per-resource sub-decision on a multi-resource request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


OUTCOME_TO_DECISION_STATUS: dict[DecisionOutcome, ResourceDecisionStatus] = {
    DecisionOutcome.APPROVE: ResourceDecisionStatus.APPROVED,
    DecisionOutcome.REJECT: ResourceDecisionStatus.REJECTED,
}


class ExtensionStatus(str, Enum):
    """Due-date extension request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


OPEN_EXTENSION_STATUSES: frozenset[ExtensionStatus] = frozenset({
    ExtensionStatus.PENDING,
})
