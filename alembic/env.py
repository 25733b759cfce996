# alembic/env.py
"""
Migration runner for the payment link tables.

The target database comes from the application settings (DATABASE_URL or
the DB_* parts), never from alembic.ini. SQLite runs in batch mode so
constraint and index changes can be replayed on local databases.
"""
from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool
from alembic import context

from config import get_settings
from models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

database_url = get_settings().database_url
options = dict(
    target_metadata=Base.metadata,
    compare_type=True,
    compare_server_default=True,
    render_as_batch=database_url.startswith("sqlite"),
)


def run_migrations_offline() -> None:
    """Emit the migration SQL for database_url without connecting."""
    context.configure(url=database_url, literal_binds=True, dialect_opts={"paramstyle": "named"}, **options)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = database_url
    engine = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(connection=connection, **options)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
