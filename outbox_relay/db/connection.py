"""
Database connection management.
Handles the async SQLAlchemy engine and the session factory shared by the
outbox writer, the processor and the API.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from outbox_relay.config import get_settings
from outbox_relay.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = create_async_engine(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.log_level == "DEBUG",
            pool_pre_ping=True,
        )
    return _engine


def get_test_engine(database_url: str) -> AsyncEngine:
    """Create an engine with NullPool, so tests never share connections across loops."""
    return create_async_engine(database_url, poolclass=NullPool, echo=False)


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_db(engine: AsyncEngine | None = None) -> None:
    """
    Initialize the session factory.
    Should be called on application and worker startup.

    Args:
        engine: Optional engine to bind instead of the settings-driven one.
    """
    global _engine, _session_factory
    if engine is not None:
        _engine = engine
    _session_factory = make_session_factory(get_engine())
    logger.info("Database connection initialized")


async def close_db() -> None:
    """
    Dispose the engine.
    Should be called on application shutdown.
    """
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database connection closed")


async def ping_db() -> bool:
    """Run ``SELECT 1``; returns False instead of raising when unreachable."""
    if _engine is None:
        return False
    try:
        async with _engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.warning("Database ping failed", extra={"error": str(e)})
        return False


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession]:
    """
    Transactional session scope.

    Commits when the block exits cleanly and rolls back when it raises.
    Producers append outbox events inside this scope together with their
    business writes.

    Raises:
        StoreUnavailableError: If the database is not initialized.
    """
    if _session_factory is None:
        raise StoreUnavailableError("Database not initialized. Call init_db() first.")

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
