"""Database session management."""

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from expense_approval.core.config import get_settings


def create_async_db_engine(url: str | None = None) -> Any:
    """Create asynchronous database engine.

    @param url - Optional database URL (defaults to Settings.database_url)
    """
    settings = get_settings()
    url = url or settings.database_url
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.debug)
    return create_async_engine(
        url,
        pool_size=10,
        max_overflow=20,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=settings.debug,
    )


def create_session_factory(engine: Any) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to an engine."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# Create engine (connections are opened lazily)
async_engine = create_async_db_engine()

# Session factory
AsyncSessionLocal = create_session_factory(async_engine)
