"""Database utilities for VocaFluence."""

from .session import (
    dispose_engine,
    get_engine,
    get_session_factory,
    init_database,
    session_scope,
)

__all__ = [
    "dispose_engine",
    "get_engine",
    "get_session_factory",
    "init_database",
    "session_scope",
]
