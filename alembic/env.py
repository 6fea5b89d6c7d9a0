"""
Alembic environment for the MindfulCare schema.

Migrations run over a synchronous driver (psycopg2 / sqlite3) using the URL
derived from settings; the app itself uses the async one.
"""
from logging.config import fileConfig
from pathlib import Path
import sys

# `alembic upgrade head` is run from the project root; make mindfulcare importable from anywhere
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from alembic import context
from sqlalchemy import create_engine, pool

from mindfulcare.core.config import settings
from mindfulcare.db.base import Base  # registers every model on Base.metadata

config = context.config
db_url = settings.sync_db_uri
config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# tables owned by other tooling sharing the database
IGNORED_TABLES = {"spatial_ref_sys"}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table" and name in IGNORED_TABLES:
        return False
    return True


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        include_object=include_object,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def run_migrations_offline() -> None:
    """Emit SQL to stdout instead of connecting."""
    _configure(
        url=db_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=db_url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(db_url, poolclass=pool.NullPool)
    with engine.connect() as connection:
        # SQLite can't ALTER most things in place; batch mode rebuilds the table
        _configure(connection=connection, render_as_batch=connection.dialect.name == "sqlite")
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
