"""Database layer - engine, base classes, types and immutability listeners."""

from ledger_kernel.db.base import UUID, Base, TrackedBase, UUIDString, enum_column
from ledger_kernel.db.engine import create_tables, get_engine, get_session_factory, session_scope
from ledger_kernel.db.types import Money, ShortCode, TenantId

__all__ = [
    "get_engine",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "enum_column",
    "UUID",
    "Money",
    "ShortCode",
    "TenantId",
]
