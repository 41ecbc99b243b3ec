from __future__ import annotations

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from quotedesk.db_migrations import to_sqlalchemy_url


config = context.config

# The Flask CLI has already configured logging for the app.
if config.config_file_name is not None and not config.attributes.get("configured_by_app"):
    fileConfig(config.config_file_name, disable_existing_loggers=False)

# Quote tables are created with plain DDL in the revision files; there is no ORM metadata.
target_metadata = None


def _quote_db_url() -> str:
    main_url = config.get_main_option("sqlalchemy.url")
    if config.attributes.get("configured_by_app"):
        return to_sqlalchemy_url(main_url)
    # Bare `alembic` invocations follow the same DATABASE_URL the app reads.
    return to_sqlalchemy_url(os.environ.get("DATABASE_URL") or main_url)


def migrate_offline() -> None:
    context.configure(
        url=_quote_db_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def migrate_online() -> None:
    engine_options = dict(config.get_section(config.config_ini_section) or {})
    engine_options["sqlalchemy.url"] = _quote_db_url()
    engine = engine_from_config(engine_options, prefix="sqlalchemy.", poolclass=pool.NullPool, future=True)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    migrate_offline()
else:
    migrate_online()
