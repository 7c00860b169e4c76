"""SnapMeal database module.

Database models and migrations:
- SQLAlchemy 2.x async ORM models
- Alembic migration configuration
- Connection pooling via psycopg

Engines and session factories are created explicitly and handed to the
services that need them (see snapmeal.core.container).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from snapmeal.core.config import DatabaseSettings


def async_database_url(url: str) -> str:
    """Rewrite a plain PostgreSQL URL to use the async psycopg driver.

    Args:
        url: Database URL as configured.

    Returns:
        URL with an async driver prefix. Non-PostgreSQL URLs are returned as-is.
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    return url


def create_engine(database: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database."""
    url = async_database_url(database.url)
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=database.echo)
    return create_async_engine(
        url,
        pool_size=database.pool_size,
        max_overflow=database.max_overflow,
        echo=database.echo,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create a session factory bound to ``engine``."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session, rolling back on error and always closing it.

    Usage:
        async with session_scope(factory) as session:
            result = await session.execute(query)
            await session.commit()

    Yields:
        AsyncSession for database operations.
    """
    session = session_factory()
    try:
        yield session
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
