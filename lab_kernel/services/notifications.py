"""
lab_kernel.services.notifications -- After-commit transition outbox.

Responsibility:
    Collects TransitionEvents while a transaction is open and hands them
    to the NotificationSink only after that transaction commits.  Events
    from a rolled-back transaction are discarded.

Architecture position:
    Kernel > Services.  Kernel services call ``record_event``; the
    WorkflowEngine attaches a TransitionOutbox to every session it opens.

Invariants enforced:
    - No event is delivered for a transition that did not commit.
    - Sink failures are logged and never raised; the committed transition
      is the source of truth.

Failure modes:
    - None raised.  A failing sink produces a ``notification_delivery_failed``
      warning per event.
"""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from lab_kernel.domain.dtos import TransitionEvent
from lab_kernel.domain.ports import NotificationSink
from lab_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

_OUTBOX_KEY = "lab_kernel.transition_outbox"


def record_event(session: Session, transition: TransitionEvent) -> None:
    """Queue an event on the session's current transaction."""
    session.info.setdefault(_OUTBOX_KEY, []).append(transition)


def pending_events(session: Session) -> list[TransitionEvent]:
    """Events queued but not yet delivered (copy)."""
    return list(session.info.get(_OUTBOX_KEY, ()))


def outbox_mark(session: Session) -> int:
    """Position to roll the outbox back to if a savepoint is rolled back."""
    return len(session.info.get(_OUTBOX_KEY, ()))


def outbox_truncate(session: Session, mark: int) -> None:
    """Drop events queued after ``mark``."""
    queued = session.info.get(_OUTBOX_KEY)
    if queued is not None:
        del queued[mark:]


class LoggingNotificationSink:
    """Sink that writes each event to the structured log.

    Used when no delivery channel is configured.
    """

    def deliver(self, transition: TransitionEvent) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event_type": transition.event_type,
                "request_id": str(transition.request_id),
                "to_status": (
                    transition.to_status.value if transition.to_status else None
                ),
                "actor_id": transition.actor_id,
            },
        )


class TransitionOutbox:
    """Delivers queued events to a sink after the owning session commits.

    Contract:
        ``attach(session)`` must be called before the session does any
        work.  The outbox never touches the database.

    Guarantees:
        - Delivery happens once per committed top-level transaction, in
          the order events were recorded.
        - A top-level rollback discards the queue.
    """

    def __init__(self, sink: NotificationSink | None = None) -> None:
        self._sink = sink or LoggingNotificationSink()

    def attach(self, session: Session) -> None:
        event.listen(session, "after_commit", self._deliver_pending)
        event.listen(session, "after_soft_rollback", self._discard_pending)

    def _deliver_pending(self, session: Session) -> None:
        queued = session.info.pop(_OUTBOX_KEY, [])
        for transition in queued:
            self._deliver(transition)

    def _discard_pending(
        self,
        session: Session,
        previous_transaction: SessionTransaction,
    ) -> None:
        # Savepoint rollbacks are handled by the caller via outbox_truncate.
        if previous_transaction.parent is not None:
            return
        dropped = session.info.pop(_OUTBOX_KEY, [])
        if dropped:
            logger.debug(
                "notifications_discarded",
                extra={"count": len(dropped)},
            )

    def _deliver(self, transition: TransitionEvent) -> None:
        try:
            self._sink.deliver(transition)
        except Exception:
            logger.warning(
                "notification_delivery_failed",
                extra={
                    "event_type": transition.event_type,
                    "request_id": str(transition.request_id),
                },
                exc_info=True,
            )
