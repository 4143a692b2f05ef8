"""Database layer - engine, base classes, types, and immutability."""

from invoice_kernel.db.base import UUID, Base, TrackedBase, UTCDateTime, UUIDString
from invoice_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from invoice_kernel.db.types import Amount, CurrencyTag, PayloadHash

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UTCDateTime",
    "UUID",
    "Amount",
    "CurrencyTag",
    "PayloadHash",
]
