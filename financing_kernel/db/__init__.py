"""Database layer - engine, base classes and column types."""

from financing_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from financing_kernel.db.engine import create_tables, get_engine, session_scope

__all__ = [
    "get_engine",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
]
