"""Database layer - engine construction and base classes."""

from approval_kernel.db.base import UUID, Base, TimestampedBase, UUIDString
from approval_kernel.db.engine import (
    build_engine,
    build_session_factory,
    create_tables,
    session_scope,
)

__all__ = [
    "build_engine",
    "build_session_factory",
    "create_tables",
    "session_scope",
    "Base",
    "TimestampedBase",
    "UUIDString",
    "UUID",
]
