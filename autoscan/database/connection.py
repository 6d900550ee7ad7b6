"""Async database access with a single-writer transaction lock.

The ``Database`` owns the SQLAlchemy engine and session factory. Reads open a
plain session and may run concurrently; every mutating operation goes through
``transaction()``, which holds an ``asyncio.Lock`` for its whole duration so
writes never interleave (SQLite allows one writer at a time anyway).

Usage:
    db = Database("sqlite+aiosqlite:///./autoscan.db")
    await db.create_all()

    async with db.session() as session:
        profile = await session.get(ScreeningProfileORM, 1)

    async with db.transaction() as session:
        session.add(TradeHistory(...))
        # commits on exit, rolls back on exception
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from autoscan.core.exceptions import PersistenceError
from autoscan.core.logging import get_logger

from .orm import Base


logger = get_logger("database")


def get_async_database_url(url: str) -> str:
    """Convert a database URL to its SQLAlchemy async driver form.

    postgresql://...  -> postgresql+asyncpg://...
    sqlite:///...     -> sqlite+aiosqlite:///...
    """
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


def _set_sqlite_pragmas(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class Database:
    """Engine, session factory and write lock for one database."""

    def __init__(self, url: str, *, echo: bool = False):
        self.url = get_async_database_url(url)
        self.is_sqlite = self.url.startswith("sqlite")

        if self.is_sqlite:
            self.engine: AsyncEngine = create_async_engine(self.url, echo=echo)
            event.listen(self.engine.sync_engine, "connect", _set_sqlite_pragmas)
        else:
            self.engine = create_async_engine(
                self.url,
                echo=echo,
                pool_pre_ping=True,
                pool_recycle=3600,
            )

        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._write_lock = asyncio.Lock()

    async def create_all(self) -> None:
        """Create any missing tables."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Schema creation failed: {e}") from e
        logger.info("Database schema ready")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Read session. Does not take the write lock."""
        async with self._session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                raise PersistenceError(f"Database read failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        """Serialized write transaction. Commits on success."""
        async with self._write_lock:
            async with self._session_factory() as session:
                try:
                    async with session.begin():
                        yield session
                except SQLAlchemyError as e:
                    raise PersistenceError(f"Database write failed: {e}") from e

    async def dispose(self) -> None:
        await self.engine.dispose()
        logger.info("Database engine closed")
