"""
Database configuration.

Engine and session factories for the job entry points and tests.
"""

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from payout_engine.config.settings import settings
from payout_engine.models import Base


def _engine_options(database_url: str, null_pool: bool) -> dict:
    """Pool options are only meaningful for server databases."""
    if null_pool:
        return {"poolclass": NullPool}
    if database_url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 5,
        "max_overflow": 10,
        "pool_pre_ping": True,
        "pool_recycle": 300,
        "pool_timeout": 30,
    }


def create_session_factory(
    database_url: str | None = None, null_pool: bool = False
) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """
    Create an engine and its session factory.

    Args:
        database_url: Defaults to DATABASE_URL
        null_pool: Open a fresh connection per session. Used by tasks that
            run their own event loop, where pooled connections cannot be
            reused across loops.

    Returns:
        (engine, session factory)
    """
    database_url = database_url or settings.database_url
    engine = create_async_engine(
        database_url,
        echo=settings.database_echo,
        **_engine_options(database_url, null_pool),
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_factory


async def init_db(engine: AsyncEngine) -> None:
    """Create tables from model metadata."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")
