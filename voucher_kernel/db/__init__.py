"""Database layer - engine, base classes and immutability listeners."""

from voucher_kernel.db.base import UUID, Base, UUIDString
from voucher_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "UUIDString",
    "UUID",
]
