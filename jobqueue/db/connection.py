"""
Database connection management.
Handles async SQLAlchemy engine and session creation.
"""

import asyncio
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

from jobqueue.config import Settings

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """
    Create the async database engine with a bounded pool.

    Args:
        settings: Application settings.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    return create_async_engine(
        settings.database_url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        pool_timeout=settings.database_pool_timeout_seconds,
        pool_recycle=settings.database_pool_recycle_seconds,
        pool_pre_ping=True,
        echo=settings.log_level == "DEBUG",
        connect_args={
            "server_settings": {
                "statement_timeout": str(settings.database_statement_timeout_ms),
                "application_name": settings.otel_service_name,
            },
        },
    )


def get_test_engine(database_url: str) -> AsyncEngine:
    """
    Create a test database engine with NullPool.

    Args:
        database_url: The database URL for testing.

    Returns:
        AsyncEngine: The test SQLAlchemy async engine instance.
    """
    return create_async_engine(
        database_url,
        poolclass=NullPool,
        echo=False,
    )


class Database:
    """
    Store handle passed explicitly to every component.

    Owns the engine (and so the connection pool) and the session factory.
    Created by the process entry point and disposed on shutdown.
    """

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Create a handle with a pooled engine."""
        return cls(create_engine(settings))

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Open a session scoped to one transaction.

        Commits when the block exits normally, rolls back on any exception,
        and always returns the connection to the pool.

        Yields:
            AsyncSession: An async database session.
        """
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> None:
        """Run a trivial query; raises if the database is unreachable."""
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def wait_until_ready(self, attempts: int, delay_seconds: float) -> None:
        """
        Wait for the database to accept connections.

        Args:
            attempts: Maximum number of pings.
            delay_seconds: Pause between pings.

        Raises:
            ConnectionError: If the database never became reachable.
        """
        for attempt in range(1, attempts + 1):
            try:
                await self.ping()
                logger.info("Database is ready", extra={"attempt": attempt})
                return
            except Exception as e:
                logger.warning(
                    "Waiting for database",
                    extra={"attempt": attempt, "max_attempts": attempts, "error": str(e)},
                )
                if attempt < attempts:
                    await asyncio.sleep(delay_seconds)
        raise ConnectionError(f"Database not ready after {attempts} attempts")

    async def dispose(self) -> None:
        """
        Close the pool.
        Should be called on application shutdown.
        """
        await self.engine.dispose()
        logger.info("Database connection closed")
