"""
SweepScheduler -- In-process polling trigger for the reconciliation sweep.

Contract:
    Calls a sweep callable (normally ``WorkflowEngine.sweep``) every
    ``interval_seconds`` on a background thread, or once per ``tick()``.

Architecture: lab_batch.  Depends on lab_kernel only through the sweep
    callable and the kernel's Clock and logging.

Invariants enforced:
    - All timestamps from injected Clock.
    - A failing sweep never kills the loop; it is logged and the next
      interval runs as usual.
    - Graceful shutdown: ``stop()`` wakes the loop and waits for the sweep
      in progress to finish.
"""

from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable

from lab_kernel.domain.clock import Clock, SystemClock
from lab_kernel.domain.dtos import SweepSummary
from lab_kernel.logging_config import get_logger

logger = get_logger("batch.scheduler")


class SweepScheduler:
    """In-process polling scheduler for the reconciliation sweep.

    Contract:
        - ``tick()`` runs one sweep and returns its summary (None on failure).
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).  Running several
          is safe because the sweep is idempotent, only wasteful.
    """

    def __init__(
        self,
        sweep: Callable[[], SweepSummary],
        interval_seconds: float = 300.0,
        clock: Clock | None = None,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._sweep = sweep
        self._interval = interval_seconds
        self._clock = clock or SystemClock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self.runs = 0
        self.failures = 0
        self.last_run_at: datetime | None = None
        self.last_summary: SweepSummary | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepSummary | None:
        """Run one sweep now (public for testing and operator triggers)."""
        with self._lock:
            self.last_run_at = self._clock.now()
            self.runs += 1
            try:
                summary = self._sweep()
            except Exception:
                self.failures += 1
                logger.exception("sweep_tick_failed")
                return None
            self.last_summary = summary
            return summary

    def start(self) -> None:
        """Start the scheduler in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="reconciliation-sweep",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweep_scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the loop to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweep_scheduler_stopped", extra={"runs": self.runs})

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop. Exits when stop_event is set."""
        while not self._stop_event.is_set():
            self.tick()
            self._stop_event.wait(timeout=self._interval)
