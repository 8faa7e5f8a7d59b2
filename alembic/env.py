"""
Alembic environment for the dispatcher's ledger tables.

Only `oonjai.db.base.Base` is the migration target; the product tables on
`ExternalBase` are owned elsewhere and never autogenerated here.
"""
from logging.config import fileConfig

from alembic import context
from sqlalchemy import engine_from_config, pool

from oonjai.core.config import settings
from oonjai.db.base import Base
from oonjai.reminders import models  # noqa: F401  registers ledger tables

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", settings.SQLALCHEMY_DATABASE_URI)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
