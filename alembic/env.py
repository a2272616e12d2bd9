import os
from sqlalchemy import create_engine, pool
from alembic import context
from orderpay.db.session import Base
import orderpay.db.models  # noqa

# one version table per service in the shared database
VERSION_TABLE = "alembic_version_orderpay"

def database_url() -> str:
    return os.getenv("POSTGRES_DSN") or context.config.get_main_option("sqlalchemy.url")

def migrate(**options):
    context.configure(
        target_metadata=Base.metadata,
        version_table=VERSION_TABLE,
        compare_type=True,
        **options,
    )
    with context.begin_transaction():
        context.run_migrations()

if context.is_offline_mode():
    migrate(url=database_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
else:
    with create_engine(database_url(), poolclass=pool.NullPool).connect() as connection:
        migrate(connection=connection)
