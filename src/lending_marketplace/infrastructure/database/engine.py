"""Async database engine and session management.

Provides:
    - build_engine / build_session_factory: construct the engine and a
      sessionmaker from settings (called once by the app factory).
    - init_db / close_db: lifecycle hooks for FastAPI's lifespan.
    - session_scope: commit-or-rollback context used by request dependencies
      and background jobs alike.

The session factory lives on `app.state` and is handed to services and
background jobs explicitly; nothing here is a module-level singleton.
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

from lending_marketplace.domain.exceptions import ServiceUnavailableError
from lending_marketplace.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from lending_marketplace.config import Settings

logger = get_logger(__name__)


def build_engine(settings: Settings) -> AsyncEngine:
    """Create the async engine described by the settings.

    Raises:
        ServiceUnavailableError: If DATABASE_URL is empty.
    """
    if not settings.database_url:
        raise ServiceUnavailableError("database")

    kwargs: dict = {"echo": settings.db_echo_sql, "pool_pre_ping": True}
    if not settings.database_url.startswith("sqlite"):
        kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
        )
    engine = create_async_engine(settings.database_url, **kwargs)
    logger.info(
        "database.engine_created",
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
    )
    return engine


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session that is committed on success or rolled back on error."""
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine, create_tables: bool) -> None:
    """Create tables if requested (development only; production schemas are managed out of band)."""
    from lending_marketplace.infrastructure.database.orm_models import Base

    if create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
            logger.info("database.tables_created")
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose of the engine. Called during FastAPI's lifespan shutdown."""
    await engine.dispose()
    logger.info("database.engine_disposed")
