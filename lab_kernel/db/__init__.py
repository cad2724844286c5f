"""Database layer - engine, base classes and types."""

from lab_kernel.db.base import UUID, Base, TimestampedBase, UTCDateTime, UUIDString
from lab_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
