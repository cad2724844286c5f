"""
Approval chain resolution (``lab_kernel.domain.approval_chain``).

Responsibility
--------------
Computes the ordered approval steps a request must pass for a given
requester role and department final authority, and answers which role is
authorised to decide at a given status.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over closed enums.  ZERO I/O.

Invariants enforced
-------------------
* Students pass faculty, resource staff and final authority in that order.
* Faculty, staff-on-behalf (``others``), liaison (``tnp``), HOD and lab
  coordinator enter at the resource-staff step.
* Resource staff and admins cannot submit requests.
* The final step is labelled "HOD" or "Lab Coordinator" but always maps
  to ``pending_final_authority``; the role allowed to decide it is the
  configured authority's role.
* A chain's valid status set never contains a status for a skipped step.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from lab_kernel.domain.lifecycle import (
    FinalAuthority,
    RequestKind,
    RequestStatus,
    Role,
    TRANSITIONS_BY_KIND,
)


class ApprovalStep(str, Enum):
    """The three human sign-off steps of the primary chain."""

    FACULTY = "faculty"
    RESOURCE_STAFF = "resource_staff"
    FINAL_AUTHORITY = "final_authority"


STEP_ORDER: tuple[ApprovalStep, ...] = (
    ApprovalStep.FACULTY,
    ApprovalStep.RESOURCE_STAFF,
    ApprovalStep.FINAL_AUTHORITY,
)

STEP_STATUS: dict[ApprovalStep, RequestStatus] = {
    ApprovalStep.FACULTY: RequestStatus.PENDING_FACULTY,
    ApprovalStep.RESOURCE_STAFF: RequestStatus.PENDING_RESOURCE_STAFF,
    ApprovalStep.FINAL_AUTHORITY: RequestStatus.PENDING_FINAL_AUTHORITY,
}

STATUS_STEP: dict[RequestStatus, ApprovalStep] = {
    status: step for step, status in STEP_STATUS.items()
}

# First step each requester role enters at; None means the role may not submit.
ENTRY_STEP: dict[Role, ApprovalStep | None] = {
    Role.STUDENT: ApprovalStep.FACULTY,
    Role.FACULTY: ApprovalStep.RESOURCE_STAFF,
    Role.OTHERS: ApprovalStep.RESOURCE_STAFF,
    Role.TNP: ApprovalStep.RESOURCE_STAFF,
    Role.HOD: ApprovalStep.RESOURCE_STAFF,
    Role.LAB_COORDINATOR: ApprovalStep.RESOURCE_STAFF,
    Role.LAB_STAFF: None,
    Role.ADMIN: None,
}


@dataclass(frozen=True)
class ChainStep:
    """One step of a resolved chain."""

    step: ApprovalStep
    status: RequestStatus
    role: Role
    label: str


@dataclass(frozen=True)
class ApprovalChain:
    """Ordered approval steps for one request.

    ``steps`` is never empty and always ends with the final-authority step.
    """

    requester_role: Role
    final_authority: FinalAuthority
    steps: tuple[ChainStep, ...]

    @property
    def initial_status(self) -> RequestStatus:
        return self.steps[0].status

    @property
    def pending_statuses(self) -> frozenset[RequestStatus]:
        return frozenset(s.status for s in self.steps)

    def step_for(self, status: RequestStatus) -> ChainStep | None:
        """The chain step that decides at ``status``, or None."""
        for s in self.steps:
            if s.status == status:
                return s
        return None

    def next_status(self, status: RequestStatus) -> RequestStatus:
        """Status after an approval at ``status`` (single-resource path)."""
        for i, s in enumerate(self.steps):
            if s.status == status:
                if i + 1 < len(self.steps):
                    return self.steps[i + 1].status
                return RequestStatus.APPROVED
        raise ValueError(f"{status.value} is not a step of this chain")

    def valid_statuses(self, kind: RequestKind) -> frozenset[RequestStatus]:
        """Every status a request with this chain may ever hold."""
        skipped = frozenset(STEP_STATUS.values()) - self.pending_statuses
        return frozenset(TRANSITIONS_BY_KIND[kind]) - skipped


def step_role(step: ApprovalStep, final_authority: FinalAuthority) -> Role:
    """Role authorised to decide ``step``."""
    if step is ApprovalStep.FACULTY:
        return Role.FACULTY
    if step is ApprovalStep.RESOURCE_STAFF:
        return Role.LAB_STAFF
    return final_authority.role


def step_label(step: ApprovalStep, final_authority: FinalAuthority) -> str:
    """Display label for ``step``."""
    if step is ApprovalStep.FACULTY:
        return "Faculty"
    if step is ApprovalStep.RESOURCE_STAFF:
        return "Lab Staff"
    return final_authority.label


def can_submit(role: Role) -> bool:
    return ENTRY_STEP[role] is not None


def resolve_chain(requester_role: Role, final_authority: FinalAuthority) -> ApprovalChain:
    """Resolve the ordered approval steps for a requester.

    Raises:
        ValueError: if ``requester_role`` may not submit requests.
    """
    entry = ENTRY_STEP[requester_role]
    if entry is None:
        raise ValueError(f"Role {requester_role.value} cannot submit requests")

    start = STEP_ORDER.index(entry)
    steps = tuple(
        ChainStep(
            step=step,
            status=STEP_STATUS[step],
            role=step_role(step, final_authority),
            label=step_label(step, final_authority),
        )
        for step in STEP_ORDER[start:]
    )
    return ApprovalChain(
        requester_role=requester_role,
        final_authority=final_authority,
        steps=steps,
    )


def required_role(status: RequestStatus, final_authority: FinalAuthority) -> Role | None:
    """Role authorised to decide a request sitting at ``status``.

    Returns None for statuses that are not approval steps.
    """
    step = STATUS_STEP.get(status)
    if step is None:
        return None
    return step_role(step, final_authority)
