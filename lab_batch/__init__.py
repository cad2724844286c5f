"""Background jobs around the lab kernel: the periodic reconciliation sweep."""

from lab_batch.scheduler import SweepScheduler

__all__ = ["SweepScheduler"]
