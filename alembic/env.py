"""Alembic environment for the tracker schema.

The database URL comes from DATABASE_URL (``.env`` is honoured), rewritten
to its async driver. SQLite runs in batch mode because it cannot alter
constraints in place.
"""

from __future__ import annotations

import asyncio
import os
from logging.config import fileConfig

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from cardano_portfolio_tracker.storage.database import to_async_url
from cardano_portfolio_tracker.storage.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

load_dotenv(override=False)
target_metadata = Base.metadata


def _resolve_url() -> str | None:
    url = os.environ.get("DATABASE_URL")
    if not url:
        return config.get_main_option("sqlalchemy.url")
    if url.startswith("sqlite:///"):
        url = "sqlite+aiosqlite:///" + url[len("sqlite:///") :]
    return to_async_url(url)


url = _resolve_url()
if url:
    config.set_main_option("sqlalchemy.url", url)


def _is_sqlite() -> bool:
    return (config.get_main_option("sqlalchemy.url") or "").startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=_is_sqlite(),
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with engine.connect() as connection:
        await connection.run_sync(_migrate)
    await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
