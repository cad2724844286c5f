"""
lab_kernel.services.transitions -- Guarded status writes.

Responsibility:
    The single write path for a request's status.  Checks the edge against
    the kind's transition table, then issues a conditional UPDATE that only
    matches while the row still holds the status the caller read.

Architecture position:
    Kernel > Services.  Used by the workflow, aggregator and loan services.

Invariants enforced:
    - Only edges listed in ``TRANSITIONS_BY_KIND`` are written.
    - Optimistic status check: ``UPDATE ... WHERE id = :id AND status =
      :expected`` must touch exactly one row.
    - ``version`` increases by one and ``updated_at`` is restamped on every
      status write.
    - Every successful write queues a TransitionEvent on the outbox.

Failure modes:
    - InvalidStateError if the edge is not legal for the request kind.
    - StaleStatusError if another transaction moved the request first.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from lab_kernel.domain.clock import Clock
from lab_kernel.domain.dtos import TransitionEvent
from lab_kernel.domain.lifecycle import RequestKind, RequestStatus, can_transition
from lab_kernel.exceptions import InvalidStateError, StaleStatusError
from lab_kernel.logging_config import get_logger
from lab_kernel.models.request import ResourceRequestModel
from lab_kernel.services.notifications import record_event

logger = get_logger("services.transitions")


def move_status(
    session: Session,
    model: ResourceRequestModel,
    target: RequestStatus,
    *,
    clock: Clock,
    operation: str,
    event_type: str,
    actor_id: int | None = None,
    resource_id: int | None = None,
    values: dict[str, Any] | None = None,
    detail: dict[str, str] | None = None,
) -> RequestStatus:
    """Move ``model`` to ``target`` and return the status it left.

    ``values`` are extra columns written in the same UPDATE (timestamps,
    approver ids, remarks).
    """
    kind = RequestKind(model.kind)
    current = RequestStatus(model.status)
    if not can_transition(kind, current, target):
        raise InvalidStateError(operation, current.value)

    now = clock.now()
    payload: dict[str, Any] = dict(values or {})
    payload.update(
        status=target.value,
        version=model.version + 1,
        updated_at=now,
    )

    result = session.execute(
        update(ResourceRequestModel)
        .where(
            ResourceRequestModel.id == model.id,
            ResourceRequestModel.status == current.value,
        )
        .values(**payload)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        logger.warning(
            "stale_status_write",
            extra={
                "request_id": str(model.id),
                "expected_status": current.value,
                "target_status": target.value,
            },
        )
        raise StaleStatusError(str(model.id), current.value)

    record_event(
        session,
        TransitionEvent(
            event_type=event_type,
            request_id=model.id,
            kind=kind,
            from_status=current,
            to_status=target,
            occurred_at=now,
            actor_id=actor_id,
            resource_id=resource_id,
            requester_id=model.requester_id,
            detail=detail or {},
        ),
    )
    logger.info(
        "request_status_changed",
        extra={
            "request_id": str(model.id),
            "from_status": current.value,
            "to_status": target.value,
            "actor_id": actor_id,
            "version": model.version,
        },
    )
    return current


def bump_version(
    session: Session,
    model: ResourceRequestModel,
    *,
    clock: Clock,
    operation: str,
    values: dict[str, Any] | None = None,
) -> None:
    """Write non-status columns under the same optimistic status check."""
    current = RequestStatus(model.status)
    payload: dict[str, Any] = dict(values or {})
    payload.update(version=model.version + 1, updated_at=clock.now())

    result = session.execute(
        update(ResourceRequestModel)
        .where(
            ResourceRequestModel.id == model.id,
            ResourceRequestModel.status == current.value,
        )
        .values(**payload)
        .execution_options(synchronize_session="evaluate")
    )
    if result.rowcount != 1:
        logger.warning(
            "stale_status_write",
            extra={
                "request_id": str(model.id),
                "expected_status": current.value,
                "operation": operation,
            },
        )
        raise StaleStatusError(str(model.id), current.value)
