"""
Alembic environment for hub-api.

The database URL always comes from hubapi settings (DATABASE_URL), never
from alembic.ini, so migrations and the app can not point at different
databases.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from hubapi import models  # noqa: F401  registers every table on Base.metadata
from hubapi.config import get_settings
from hubapi.database import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata
database_url = get_settings().database_url
is_sqlite = database_url.startswith("sqlite")


def run_offline() -> None:
    """Emit SQL to stdout instead of executing it."""
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online() -> None:
    engine = create_engine(
        database_url,
        poolclass=pool.NullPool,
        connect_args={"check_same_thread": False} if is_sqlite else {},
    )
    with engine.connect() as connection:
        # SQLite can not ALTER most columns in place; batch mode rebuilds the table
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=is_sqlite,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_offline()
else:
    run_online()
