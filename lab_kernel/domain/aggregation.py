"""
Multi-resource aggregation rule (``lab_kernel.domain.aggregation``).

Responsibility
--------------
Derives a multi-resource request's parent status from the statuses of its
per-resource decisions.  This is the single place the rule lives; the
aggregator service and the reconciliation sweeper both call it.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Invariants enforced
-------------------
* Any pending decision: parent stays at ``pending_resource_staff``.
* All resolved, at least one approved: ``pending_final_authority``, or
  ``approved`` directly when the final authority is the lab coordinator.
* All rejected: ``rejected``.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from typing import Iterable

from lab_kernel.domain.lifecycle import (
    FinalAuthority,
    RequestStatus,
    ResourceDecisionStatus,
)

ALL_REJECTED_REASON = "All resources rejected by resource staff"


@dataclass(frozen=True)
class AggregateOutcome:
    """Result of applying the aggregation rule to one request's decisions."""

    next_status: RequestStatus | None
    approved: int
    rejected: int
    pending: int

    @property
    def resolved(self) -> bool:
        return self.next_status is not None


def derive_parent_status(
    decisions: Iterable[ResourceDecisionStatus],
    final_authority: FinalAuthority,
) -> AggregateOutcome:
    """Apply the aggregation rule.

    ``next_status`` is None while any decision is pending (or there are no
    decisions at all).
    """
    counts = Counter(decisions)
    approved = counts[ResourceDecisionStatus.APPROVED]
    rejected = counts[ResourceDecisionStatus.REJECTED]
    pending = counts[ResourceDecisionStatus.PENDING]

    next_status: RequestStatus | None
    if pending or not (approved or rejected):
        next_status = None
    elif approved:
        if final_authority is FinalAuthority.LAB_COORDINATOR:
            next_status = RequestStatus.APPROVED
        else:
            next_status = RequestStatus.PENDING_FINAL_AUTHORITY
    else:
        next_status = RequestStatus.REJECTED

    return AggregateOutcome(
        next_status=next_status,
        approved=approved,
        rejected=rejected,
        pending=pending,
    )
