"""Async database engine and session management."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from marketplace_realtime.core.database import Base
from marketplace_realtime.core.settings import get_db_settings

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

db_settings = get_db_settings()

engine: AsyncEngine = create_async_engine(
    db_settings.get_sqlalchemy_url(),
    **db_settings.sqlalchemy_engine_kwargs(),
)

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Get async database session.

    Example:
        async with get_async_session() as session:
            result = await session.execute(select(ChatMessage))
    """
    async with AsyncSessionLocal() as session:
        yield session


async def init_database() -> None:
    """Verify the database is reachable.

    Raises:
        sqlalchemy.exc.SQLAlchemyError: If the connection check fails.
    """
    backend = "postgresql" if db_settings.is_configured else "sqlite"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(
            "Failed to connect to database",
            extra={"backend": backend, "error": str(e)},
        )
        raise
    logger.info("Database connection established", extra={"backend": backend})


async def create_tables(bind: AsyncEngine | None = None) -> None:
    """Create the message table (and any other ORM tables) if missing."""
    # Import models so they register on Base.metadata
    from marketplace_realtime.features.messaging import models  # noqa: F401

    target = bind or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables ensured", extra={"tables": sorted(Base.metadata.tables)})


async def close_database() -> None:
    """Dispose of the engine's connection pool."""
    logger.info("Closing database connection")
    await engine.dispose()


__all__ = [
    "AsyncSessionLocal",
    "close_database",
    "create_tables",
    "engine",
    "get_async_session",
    "init_database",
]
