from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine

from buildtalk import models  # noqa: F401  (registers the tables on Base.metadata)
from buildtalk.db import Base
from buildtalk.settings import get_database_url

config = context.config

# The application configures logging itself when it runs migrations at startup
if config.config_file_name and config.attributes.get("configure_logger", True):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def get_migration_url() -> str:
    """Database URL for migrations; an admin URL wins when DDL needs other credentials."""
    return config.get_main_option("sqlalchemy.url") or os.getenv("DB_ADMIN_URL") or get_database_url()


def run_migrations_offline() -> None:
    url = get_migration_url()

    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        render_as_batch=url.startswith("sqlite"),
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    url = get_migration_url()
    connectable = create_engine(url, pool_pre_ping=True)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=url.startswith("sqlite"),
        )

        with context.begin_transaction():
            context.run_migrations()

    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
