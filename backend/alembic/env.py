"""
Alembic environment for the VOX schema.

Migrations target Postgres only: they use JSONB, partial indexes and
``updated_at`` triggers. The SQLite databases used by the test suite are
built straight from the models with ``Base.metadata.create_all``.
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import Connection, make_url

from vox.config import get_settings
from vox.db.base import Base
from vox.db import models  # noqa: F401 - registers tables on Base.metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# DATABASE_URL_OVERRIDE or the POSTGRES_* parts, with the async driver swapped for psycopg2
url = get_settings().database_url_sync
if make_url(url).get_backend_name() != "postgresql":
    raise RuntimeError(
        f"Migrations require Postgres, got {make_url(url).get_backend_name()!r}. "
        "SQLite databases are created from the models directly."
    )
# configparser treats % as interpolation
config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit the migration SQL to stdout instead of running it."""
    _configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)
    with connectable.connect() as connection:
        do_run_migrations(connection)
    connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
