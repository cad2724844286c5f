"""
ReconciliationSweeper -- SAVEPOINT-per-request repair of stuck aggregates.

Contract:
    Finds multi-resource requests still at ``pending_resource_staff`` whose
    resource decisions are all resolved, and runs the aggregator on each.

Architecture: lab_kernel/services.  Imports from domain/, selectors/ and the
    aggregator service.  Driven by lab_batch.scheduler or scripts/run_sweep.py.

Invariants enforced:
    - Uses MultiResourceAggregator.aggregate, the same primitive as the
      online decide path.
    - SAVEPOINT isolation per request: one failure does not undo the
      repairs already made in this pass.
    - Idempotent: a repaired request no longer matches the selection, and
      aggregate on an already-moved request is a no-op.
    - All timestamps from the injected Clock.
"""

from __future__ import annotations

import time

from sqlalchemy.orm import Session

from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import SweepError, SweepSummary
from lab_kernel.domain.lifecycle import RequestStatus
from lab_kernel.logging_config import get_logger
from lab_kernel.selectors.request_selector import RequestSelector
from lab_kernel.services.aggregator import MultiResourceAggregator
from lab_kernel.services.notifications import outbox_mark, outbox_truncate

logger = get_logger("services.reconciliation_sweeper")


class ReconciliationSweeper:
    """Repairs parents whose status drifted from their resolved decisions.

    Guarantees:
        - Never raises for a per-request failure; failures are logged and
          returned in ``SweepSummary.errors``.
        - Returns zero counts when nothing is stuck.

    Non-goals:
        Commit.  The caller owns the outer transaction.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        batch_limit: int | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._batch_limit = batch_limit
        self._selector = RequestSelector(session)
        self._aggregator = MultiResourceAggregator(session, self._clock)

    def sweep(self) -> SweepSummary:
        started = time.monotonic()
        candidates = self._selector.stuck_multi_resource_ids(limit=self._batch_limit)

        moved_to_final = 0
        auto_approved = 0
        rejected = 0
        unchanged = 0
        errors: list[SweepError] = []

        for request_id in candidates:
            mark = outbox_mark(self._session)
            savepoint = self._session.begin_nested()
            try:
                result = self._aggregator.aggregate(request_id)
                savepoint.commit()
            except Exception as exc:
                savepoint.rollback()
                outbox_truncate(self._session, mark)
                code = getattr(exc, "code", "UNHANDLED_EXCEPTION")
                errors.append(SweepError(request_id=request_id, code=code, message=str(exc)))
                logger.warning(
                    "sweep_item_failed",
                    extra={"request_id": str(request_id), "error_code": code},
                    exc_info=True,
                )
                continue

            if not result.changed:
                unchanged += 1
            elif result.status is RequestStatus.PENDING_FINAL_AUTHORITY:
                moved_to_final += 1
            elif result.status is RequestStatus.APPROVED:
                auto_approved += 1
            elif result.status is RequestStatus.REJECTED:
                rejected += 1

            if result.changed:
                logger.info(
                    "sweep_item_repaired",
                    extra={
                        "request_id": str(request_id),
                        "to_status": result.status.value,
                    },
                )

        summary = SweepSummary(
            examined=len(candidates),
            moved_to_final_authority=moved_to_final,
            auto_approved=auto_approved,
            rejected=rejected,
            unchanged=unchanged,
            errors=tuple(errors),
        )
        logger.info(
            "sweep_completed",
            extra={
                "examined": summary.examined,
                "moved_to_final_authority": summary.moved_to_final_authority,
                "auto_approved": summary.auto_approved,
                "rejected": summary.rejected,
                "unchanged": summary.unchanged,
                "error_count": len(summary.errors),
                "duration_ms": int((time.monotonic() - started) * 1000),
                "swept_at": self._clock.now().isoformat(),
            },
        )
        return summary
