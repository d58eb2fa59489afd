"""Database layer: engine, sessions, declarative bases."""

from receivables_kernel.db.base import Base, TrackedBase, UUIDString, VersionedMixin, VoidableMixin
from receivables_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
    transaction_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "VersionedMixin",
    "VoidableMixin",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "transaction_scope",
]
