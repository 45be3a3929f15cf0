"""Database infrastructure module."""

from expense_approval.infrastructure.database.session import (
    AsyncSessionLocal,
    async_engine,
    create_async_db_engine,
    create_session_factory,
)

__all__ = [
    "async_engine",
    "AsyncSessionLocal",
    "create_async_db_engine",
    "create_session_factory",
]
