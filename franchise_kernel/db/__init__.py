"""Database layer - engine, base classes, and column types."""

from franchise_kernel.db.base import (
    Base,
    CurrencyAmount,
    Percentage,
    Rate,
    TrackedBase,
    UUIDString,
)
from franchise_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "CurrencyAmount",
    "Percentage",
    "Rate",
]
