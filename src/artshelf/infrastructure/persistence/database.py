"""Async engine and transactional sessions for the catalog and the job ledger.

Hey future me - every write in artshelf goes through session_scope(): one scope is one
transaction. The scanner commits one scope per batch, the ledger one per transition and
ingestion exactly one for the Image swap. Keep scopes short on SQLite, a scope that stays
open while we await the filesystem holds the single write lock and the job ledger starts
answering "database is locked".
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from artshelf.config import Settings

logger = logging.getLogger(__name__)

# Seconds a SQLite connection waits for the write lock before raising "database is locked"
SQLITE_BUSY_TIMEOUT = 30


def _engine_options(url: str, settings: Settings) -> dict[str, Any]:
    options: dict[str, Any] = {
        "echo": settings.database.echo,
        "pool_pre_ping": settings.database.pool_pre_ping,
    }
    if url.startswith("sqlite"):
        # Scan batches and API requests share the file, aiosqlite runs each connection
        # in its own thread
        options["connect_args"] = {
            "check_same_thread": False,
            "timeout": SQLITE_BUSY_TIMEOUT,
        }
    elif url.startswith("postgresql"):
        options.update(
            pool_size=settings.database.pool_size,
            max_overflow=settings.database.max_overflow,
            pool_timeout=settings.database.pool_timeout,
            pool_recycle=settings.database.pool_recycle,
        )
    return options


class Database:
    """Owns the engine. One instance per process, built in the lifespan."""

    def __init__(self, settings: Settings) -> None:
        url = settings.database.url
        self._engine = create_async_engine(url, **_engine_options(url, settings))
        if url.startswith("sqlite"):
            self._enable_sqlite_foreign_keys()

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    def _enable_sqlite_foreign_keys(self) -> None:
        """Turn on foreign keys for every new SQLite connection.

        Deleting an artwork relies on ON DELETE CASCADE to drop its images and
        artwork_tags rows, and SQLite ignores foreign keys unless asked per connection.
        """

        @event.listens_for(self._engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_conn: Any, _connection_record: Any) -> None:
            cursor = dbapi_conn.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @asynccontextmanager
    async def session_scope(self) -> AsyncGenerator[AsyncSession, None]:
        """One transaction: commit when the block exits cleanly, roll back otherwise."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create the schema on startup (DATABASE_CREATE_TABLES, tests). Alembic otherwise."""
        from artshelf.infrastructure.persistence.models import Base

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Catalog and job tables ready")

    async def close(self) -> None:
        """Dispose the engine at shutdown."""
        await self._engine.dispose()
