"""Alembic migrations environment for the service zones schema."""
from logging.config import fileConfig
import asyncio

from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from alembic import context

from servicezones.config import get_settings
from servicezones.database import Base
from servicezones.models import *  # noqa: F401,F403

settings = get_settings()
config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# Created by the postgis extension, never by our migrations
POSTGIS_TABLES = {"spatial_ref_sys", "topology", "layer"}


def include_object(object, name, type_, reflected, compare_to):
    """Compare only tables declared on Base; skip PostGIS-owned tables."""
    if type_ == "table":
        return name in target_metadata.tables and name not in POSTGIS_TABLES
    return True


def run_migrations_offline() -> None:
    """Emit SQL for the configured DATABASE_URL without connecting."""
    context.configure(
        url=settings.DATABASE_URL,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        include_object=include_object,
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection):
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations():
    connectable = create_async_engine(settings.DATABASE_URL, poolclass=pool.NullPool)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)

    await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_async_migrations())
