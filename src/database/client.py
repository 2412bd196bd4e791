"""PostgreSQL client and connection management with SQLAlchemy."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from src.config.settings import Settings
from src.database.base import Base

logger = logging.getLogger(__name__)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build the session factory shared by request handlers and the session ledger."""
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@asynccontextmanager
async def session_scope(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Open a session that commits on success and rolls back on error.

    Usage:
        async with session_scope(factory) as session:
            session.add(user)
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(config: Settings) -> tuple[AsyncEngine, async_sessionmaker[AsyncSession]]:
    """Initialize PostgreSQL connection and SQLAlchemy.

    This function:
    1. Creates the async engine
    2. Creates the session factory
    3. Verifies connection (and creates tables when auto-create is enabled)

    Args:
        config: Application settings

    Returns:
        Tuple of (engine, session_factory)

    """
    try:
        logger.info(f"Connecting to PostgreSQL at {config.postgres_url.split('@')[-1]}")

        connect_args = {}
        if config.postgres_url.startswith("postgresql+asyncpg"):
            # Per-statement deadline so a slow database cannot pin a handler
            connect_args["command_timeout"] = config.postgres_command_timeout

        engine = create_async_engine(
            config.postgres_url,
            echo=config.postgres_echo,
            pool_size=config.postgres_pool_size,
            max_overflow=config.postgres_max_overflow,
            pool_timeout=config.postgres_pool_timeout,
            pool_recycle=config.postgres_pool_recycle,
            pool_pre_ping=True,  # Verify connections before using
            connect_args=connect_args,
        )

        session_factory = create_session_factory(engine)

        # Verify connection
        async with engine.begin() as conn:
            await conn.execute(text("SELECT 1"))
            if config.database_auto_create:
                logger.warning("database_auto_create is enabled, creating missing tables")
                await conn.run_sync(Base.metadata.create_all)

        logger.info("PostgreSQL connection successful")
        return engine, session_factory

    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_db(engine: AsyncEngine) -> None:
    """Close PostgreSQL connection gracefully."""
    logger.info("Closing PostgreSQL connection")
    await engine.dispose()
    logger.info("PostgreSQL connection closed")
