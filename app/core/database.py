"""Async engine and session lifecycle for the billing and feedback tables."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.config import Settings, settings

logger = logging.getLogger(__name__)

# Hosted Postgres hands out plain driver URLs; the async engine needs asyncpg.
_ASYNC_DRIVERS = {"postgres": "postgresql+asyncpg", "postgresql": "postgresql+asyncpg"}

engine: AsyncEngine | None = None
async_session: async_sessionmaker[AsyncSession] | None = None


def engine_options(config: Settings) -> tuple[str, dict[str, Any]]:
    """Resolve the async URL and pool keyword arguments for ``create_async_engine``."""
    url = make_url(config.database_url)
    driver = _ASYNC_DRIVERS.get(url.drivername)
    if driver:
        url = url.set(drivername=driver)
    options: dict[str, Any] = {"echo": config.debug, "pool_pre_ping": True}
    if url.get_backend_name() != "sqlite":
        options.update(
            pool_size=config.db_pool_min_size,
            max_overflow=max(0, config.db_pool_max_size - config.db_pool_min_size),
            pool_recycle=300,
        )
    return url.render_as_string(hide_password=False), options


async def init_database(config: Settings | None = None) -> None:
    """Create the engine and session factory when a database URL is configured."""
    global engine, async_session
    config = config or settings

    if not config.database_url:
        logger.info("database.disabled")
        return

    try:
        url, options = engine_options(config)
        engine = create_async_engine(url, **options)
    except (SQLAlchemyError, ImportError, ValueError) as exc:
        logger.error("database.init_failed", extra={"error": str(exc)})
        raise
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    logger.info(
        "database.initialized",
        extra={"url": make_url(url).render_as_string(hide_password=True)},
    )


async def dispose_database() -> None:
    """Release pooled connections on shutdown."""
    global engine, async_session
    if engine is not None:
        await engine.dispose()
        logger.info("database.disposed")
    engine = None
    async_session = None


async def get_database() -> AsyncIterator[AsyncSession | None]:
    """Yield a session, or ``None`` when the service runs without a database."""
    if async_session is None:
        yield None
        return

    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def check_database_health() -> bool:
    """An unconfigured database counts as healthy; a configured one must answer ``SELECT 1``."""
    if engine is None:
        return True
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as exc:
        logger.error("database.health_failed", extra={"error": str(exc)})
        return False
    return True
