"""Alembic environment for the offboarding schema (async engine)."""

import asyncio
from logging.config import fileConfig

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context
from offboard.config import get_settings
from offboard.core.database import normalize_database_url
from offboard.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url, connect_args = normalize_database_url(get_settings().database_url)
config.set_main_option("sqlalchemy.url", database_url)

target_metadata = Base.metadata


def _configure(**kwargs) -> None:
    # SQLite needs batch mode to alter tables
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        render_as_batch=database_url.startswith("sqlite"),
        **kwargs,
    )


def run_offline() -> None:
    """Emit SQL for the configured URL without connecting."""
    _configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def run_online() -> None:
    engine = create_async_engine(database_url, poolclass=pool.NullPool, connect_args=connect_args)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_offline()
else:
    asyncio.run(run_online())
