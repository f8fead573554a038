import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool, create_engine

from ticketbridge.core.config import settings
from ticketbridge.db.session import Base

# Import all models so Alembic sees them in metadata
from ticketbridge.models.booking import Booking  # noqa: F401
from ticketbridge.models.cancellation import CancellationRequest  # noqa: F401
from ticketbridge.models.refund_log import RefundLogEntry  # noqa: F401
from ticketbridge.models.download_log import TicketDownloadLog  # noqa: F401
from ticketbridge.models.activity_log import ActivityLog  # noqa: F401


config = context.config

# Force sqlalchemy.url from the runtime DATABASE_URL
db_url = getattr(settings, "DATABASE_URL", None) or os.getenv("DATABASE_URL")
if not db_url:
    raise RuntimeError("DATABASE_URL is not set (check .env / ticketbridge.core.config.settings)")

config.set_main_option("sqlalchemy.url", db_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    # create_engine instead of engine_from_config: the ini file does not expand env vars
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=pool.NullPool)

    with connectable.connect() as connection:
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
