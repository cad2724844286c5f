"""Kernel services: the imperative shell around the pure domain."""

from lab_kernel.services.aggregator import AggregateResult, MultiResourceAggregator
from lab_kernel.services.conflict_detector import ConflictDetector
from lab_kernel.services.loan_service import LoanService
from lab_kernel.services.notifications import LoggingNotificationSink, TransitionOutbox
from lab_kernel.services.reconciliation_sweeper import ReconciliationSweeper
from lab_kernel.services.request_workflow import RequestWorkflowService, SubmitDetails
from lab_kernel.services.slot_lock_service import SlotLockService
from lab_kernel.services.workflow_engine import WorkflowEngine

__all__ = [
    "AggregateResult",
    "ConflictDetector",
    "LoanService",
    "LoggingNotificationSink",
    "MultiResourceAggregator",
    "ReconciliationSweeper",
    "RequestWorkflowService",
    "SlotLockService",
    "SubmitDetails",
    "TransitionOutbox",
    "WorkflowEngine",
]
