"""Database layer - engine, base classes and types."""

from approval_kernel.db.base import UUID, Base, UUIDString
from approval_kernel.db.engine import (
    create_sqlite_engine,
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
    "create_sqlite_engine",
    "Base",
    "UUIDString",
    "UUID",
]
