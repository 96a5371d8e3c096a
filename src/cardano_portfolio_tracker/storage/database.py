"""Engine and session handling for the tracker database.

PostgreSQL (asyncpg) is the production target. SQLite through aiosqlite is
accepted for local runs and tests; its connections get foreign keys switched
on so snapshot balances and alert events cascade with their parents.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cardano_portfolio_tracker.storage.models import Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)

_ASYNC_SCHEMES = {
    "postgresql://": "postgresql+asyncpg://",
    "postgres://": "postgresql+asyncpg://",
}


def to_async_url(database_url: str) -> str:
    """Rewrite a sync PostgreSQL URL to use the asyncpg driver."""
    for prefix, replacement in _ASYNC_SCHEMES.items():
        if database_url.startswith(prefix):
            logger.debug("Using %s driver for %s URL", replacement, prefix)
            return replacement + database_url[len(prefix) :]
    return database_url


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_async_engine(
    database_url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> AsyncEngine:
    """Create the async engine for ``database_url``.

    Pool sizing only applies to PostgreSQL.
    """
    url = to_async_url(database_url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url, echo=echo)
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine
    return create_async_engine(
        url,
        echo=echo,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
    )


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing tables. Deployments normally run Alembic instead."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema created")


class DatabaseManager:
    """Owns the engine and hands out transactional sessions.

    The engine is created lazily on first use, so building a manager never
    touches the database.
    """

    def __init__(
        self,
        database_url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> None:
        self.database_url = database_url
        self._engine_options = {"pool_size": pool_size, "max_overflow": max_overflow, "echo": echo}
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = build_async_engine(self.database_url, **self._engine_options)
        return self._engine

    @asynccontextmanager
    async def get_async_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session scope: commit on clean exit, roll back and re-raise on error."""
        if self._sessions is None:
            self._sessions = async_sessionmaker(bind=self.engine, expire_on_commit=False)

        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_schema_async(self) -> None:
        await create_schema(self.engine)

    async def dispose_async(self) -> None:
        """Close pooled connections; the next session recreates the engine."""
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._sessions = None
        logger.debug("Database engine disposed")
