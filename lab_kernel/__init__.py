"""
Lab Kernel - resource request workflow engine.

Governs lab bookings and component loans from submission to a terminal
outcome:
- Time-slot conflict detection against live requests and fixed timetables
- Role-ordered approval chains with a per-department final authority
- Per-lab sub-decisions aggregated into one parent outcome
- Idempotent reconciliation of requests left stuck by partial failures
- Loan issue, return and due-date extension handling
"""

__version__ = "0.1.0"
