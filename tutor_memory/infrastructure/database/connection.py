# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

The memory store lives in a single database (PostgreSQL + asyncpg in
production). DatabaseManager owns the engine and sessionmaker; the
module-level helpers keep one process-wide manager for the interactive
path, and get_worker_db_manager() hands each Dramatiq worker thread its own
manager because async engines are bound to the event loop that created them.

Example:
    from tutor_memory.infrastructure.database.connection import (
        init_database,
        get_database,
    )

    await init_database(settings)

    async with get_database().get_session() as session:
        result = await session.execute(select(MemoryFactRecord))
"""

import logging
import threading
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from tutor_memory.infrastructure.database.models import Base

if TYPE_CHECKING:
    from tutor_memory.core.config.settings import DatabaseSettings, Settings

logger = logging.getLogger(__name__)


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class DatabaseManager:
    """Engine and session factory for the memory store database.

    Args:
        url: Async SQLAlchemy URL.
        pool_size: Connection pool size (ignored for SQLite).
        max_overflow: Maximum overflow connections (ignored for SQLite).
        echo: Log emitted SQL.
    """

    def __init__(
        self,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        echo: bool = False,
    ) -> None:
        try:
            if url.startswith("sqlite") and ":memory:" in url:
                # In-memory SQLite must share one connection across sessions
                self._engine = create_async_engine(
                    url,
                    echo=echo,
                    poolclass=StaticPool,
                    connect_args={"check_same_thread": False},
                )
            elif url.startswith("sqlite"):
                self._engine = create_async_engine(url, echo=echo)
            else:
                self._engine = create_async_engine(
                    url,
                    pool_size=pool_size,
                    max_overflow=max_overflow,
                    pool_pre_ping=True,
                    pool_recycle=1800,
                    echo=echo,
                )
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to create database engine", e) from e

        self._sessionmaker = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: "DatabaseSettings") -> "DatabaseManager":
        return cls(
            settings.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            echo=settings.echo,
        )

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        """Get an async session, committed on success and rolled back on error.

        Yields:
            AsyncSession for database operations.

        Raises:
            DatabaseError: If a database operation fails.
        """
        async with self._sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError("Database operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all memory store tables that do not exist yet."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise DatabaseError("Failed to create tables", e) from e
        logger.info("Memory store tables ensured")

    async def check_connection(self) -> bool:
        """Check if the database is reachable."""
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    async def close(self) -> None:
        """Dispose of the connection pool."""
        await self._engine.dispose()


# Module-level state for the process-wide connection
_database: Optional[DatabaseManager] = None


async def init_database(settings: "Settings") -> DatabaseManager:
    """Initialize the process-wide database manager.

    Args:
        settings: Application settings containing database configuration.

    Returns:
        The initialized DatabaseManager.

    Raises:
        DatabaseError: If engine creation fails.
    """
    global _database

    if _database is None:
        _database = DatabaseManager.from_settings(settings.database)
    return _database


def get_database() -> DatabaseManager:
    """Get the process-wide database manager.

    Raises:
        DatabaseError: If the database has not been initialized.
    """
    if _database is None:
        raise DatabaseError("Database not initialized. Call init_database() first.")
    return _database


async def close_database() -> None:
    """Close the process-wide database manager."""
    global _database

    if _database is not None:
        await _database.close()
        _database = None


_thread_local = threading.local()


def get_worker_db_manager() -> DatabaseManager:
    """Get the DatabaseManager for the current worker thread.

    Each Dramatiq worker thread runs its own persistent event loop (see
    tasks.base.run_async), and SQLAlchemy async engines are bound to the
    loop they are first used on, so every thread gets its own manager.

    Returns:
        Thread-local DatabaseManager instance.
    """
    manager = getattr(_thread_local, "db_manager", None)

    if manager is None:
        from tutor_memory.core.config import get_settings

        manager = DatabaseManager.from_settings(get_settings().database)
        _thread_local.db_manager = manager

    return manager


def reset_worker_db_manager() -> None:
    """Drop the current thread's manager.

    Called by run_async() when it has to create a new event loop, so engines
    never reference a closed loop.
    """
    _thread_local.db_manager = None
