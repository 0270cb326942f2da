"""
Database infrastructure for the stock costing kernel.

Startup: every entry point calls ``init_engine_from_url()`` and then
``register_immutability_listeners()`` before opening a session.  Without
the listeners, frozen lot and consumption fields and the audit trail are
not protected at flush time.
"""

from stock_kernel.db.base import Base, TimestampedBase, UUIDString
from stock_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from stock_kernel.db.immutability import register_immutability_listeners

__all__ = [
    "Base",
    "TimestampedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "register_immutability_listeners",
    "reset_engine",
    "session_scope",
]
