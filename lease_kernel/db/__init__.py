"""Database layer - engine, base classes, types and write guards."""

from lease_kernel.db.base import UUID, Base, CompanyScopedBase, TrackedBase, UUIDString
from lease_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from lease_kernel.db.types import round2, round_money, to_money

__all__ = [
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "CompanyScopedBase",
    "UUIDString",
    "UUID",
    "to_money",
    "round2",
    "round_money",
]
