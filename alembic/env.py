"""Alembic environment for the incident engine schema.

Migrations run synchronously through psycopg; the application URL is
converted from its asyncpg form so one setting drives both.
"""

import logging
from collections.abc import Collection, Mapping
from logging.config import fileConfig
from typing import Any

from alembic import context
from alembic.runtime.migration import MigrationContext, MigrationInfo
from sqlalchemy import engine_from_config, pool

from ttc_incidents.core.config import settings
from ttc_incidents.core.utils import convert_async_db_url_to_sync
from ttc_incidents.models import Base  # Registers every model on the metadata

logger = logging.getLogger("alembic.env")

config = context.config
config.set_main_option("sqlalchemy.url", convert_async_db_url_to_sync(settings.DATABASE_URL))

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Emit migration SQL to stdout without connecting."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a live connection, logging each revision applied."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        applied: list[str] = []

        def on_version_apply(
            ctx: MigrationContext,
            step: MigrationInfo,
            heads: Collection[Any],
            run_args: Mapping[str, Any],
        ) -> None:
            applied.append(str(step.up_revision_id))
            logger.info(f"Applying migration {step.up_revision_id}")

        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            on_version_apply=on_version_apply,
        )

        current_rev = context.get_context().get_current_revision()
        head_rev = context.script.get_current_head()
        if current_rev == head_rev:
            logger.info(f"✓ Database already at revision {head_rev or 'base'}")
        else:
            logger.info(f"Migrating database from {current_rev or 'empty'} to {head_rev}")

        with context.begin_transaction():
            context.run_migrations()

        if applied:
            logger.info(f"✓ Applied {len(applied)} migration(s); database now at {head_rev}")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
