"""
Typed Exception Hierarchy for the Lab Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The HTTP layer in front of the engine has to map every failed transition to
a precise user-facing outcome ("slot taken", "not your step", "already
issued").  Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        engine.submit(...)
    except SlotConflictError as e:
        return {"error": e.code, "conflicts": [c.describe() for c in e.conflicts]}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LabKernelError:

    LabKernelError (base)
    |
    +-- ValidationError            caller's fault, never retried
    |   +-- DirectoryLookupError
    |
    +-- ConflictError              safe to retry after re-reading state
    |   +-- SlotConflictError
    |   +-- StaleStatusError
    |   +-- InsufficientStockError
    |
    +-- AuthorizationError         never retried
    |
    +-- InvalidStateError          never retried
    |
    +-- RequestNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                  | When Raised
----------------|-----------------------|-----------------------------------------
Validation      | VALIDATION_ERROR      | Malformed or missing submission fields
                | RESOURCE_UNKNOWN      | Resource id not in the directory
----------------|-----------------------|-----------------------------------------
Conflict        | SLOT_CONFLICT         | Interval overlaps a live request or
                |                       | a fixed timetable entry
                | STALE_STATUS          | Status changed under a concurrent writer
                | INSUFFICIENT_STOCK    | Issue would drive stock negative
----------------|-----------------------|-----------------------------------------
Authorization   | NOT_AUTHORIZED        | Wrong role or user for the current step
----------------|-----------------------|-----------------------------------------
State           | INVALID_STATE         | Operation not valid in current status
----------------|-----------------------|-----------------------------------------
Lookup          | REQUEST_NOT_FOUND     | Request id does not exist

===============================================================================
"""

from __future__ import annotations

from typing import Any, Sequence


class LabKernelError(Exception):
    """
    Base exception for all lab kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "LAB_KERNEL_ERROR"


# Validation


class ValidationError(LabKernelError):
    """Malformed or missing required fields on a submission or decision."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class DirectoryLookupError(ValidationError):
    """Resource id is not known to the resource directory."""

    code: str = "RESOURCE_UNKNOWN"

    def __init__(self, resource_id: int):
        self.resource_id = resource_id
        super().__init__(f"Unknown resource: {resource_id}", field="resource_ids")


# Conflicts


class ConflictError(LabKernelError):
    """Base for conflicts that are safe to retry after re-reading state."""

    code: str = "CONFLICT"


class SlotConflictError(ConflictError):
    """
    Requested interval overlaps an active reservation or timetable entry.

    ``conflicts`` holds the SlotConflict records that blocked the request;
    the message names each overlapping interval.
    """

    code: str = "SLOT_CONFLICT"

    def __init__(self, resource_id: int, booking_date: Any, conflicts: Sequence[Any]):
        self.resource_id = resource_id
        self.booking_date = booking_date
        self.conflicts = tuple(conflicts)
        described = "; ".join(c.describe() for c in self.conflicts)
        super().__init__(
            f"Resource {resource_id} is not free on {booking_date}: {described}"
        )


class StaleStatusError(ConflictError):
    """Request status changed between read and write (optimistic check)."""

    code: str = "STALE_STATUS"

    def __init__(self, request_id: str, expected_status: str):
        self.request_id = request_id
        self.expected_status = expected_status
        super().__init__(
            f"Request {request_id} is no longer in status {expected_status}"
        )


class InsufficientStockError(ConflictError):
    """Issuing a loan would take a component's available quantity below zero."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, component_id: int, requested: int, available: int):
        self.component_id = component_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for component {component_id}: "
            f"requested {requested}, available {available}"
        )


# Authorization


class AuthorizationError(LabKernelError):
    """Acting role or user is not permitted at the request's current step."""

    code: str = "NOT_AUTHORIZED"

    def __init__(
        self,
        message: str,
        required_role: str | None = None,
        step: str | None = None,
    ):
        self.required_role = required_role
        self.step = step
        super().__init__(message)


# State


class InvalidStateError(LabKernelError):
    """Operation is not valid for the request's current status."""

    code: str = "INVALID_STATE"

    def __init__(self, operation: str, current_status: str, detail: str = ""):
        self.operation = operation
        self.current_status = current_status
        message = f"Cannot {operation} a request in status {current_status}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


# Lookup


class RequestNotFoundError(LabKernelError):
    """Request with the given id does not exist."""

    code: str = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")
