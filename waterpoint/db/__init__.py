"""Database module - async engine and session management."""

from waterpoint.db.engine import (
    SessionFactory,
    close_db,
    create_engine,
    create_session_factory,
    init_db,
    session_scope,
)

__all__ = [
    "SessionFactory",
    "close_db",
    "create_engine",
    "create_session_factory",
    "init_db",
    "session_scope",
]
