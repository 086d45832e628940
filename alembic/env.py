from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from rxflow.core.config import settings
from rxflow.db.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# models are registered on Base by rxflow.db.base
target_metadata = Base.metadata


def _database_url() -> str:
    # `alembic -x db_url=...` wins over DATABASE_URL
    return context.get_x_argument(as_dictionary=True).get("db_url") or settings.database_url


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
