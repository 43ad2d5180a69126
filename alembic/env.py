"""
Alembic Environment Configuration
==================================

Runs migrations against the kickpay database.
The sqlalchemy.url is overridden at runtime by kickpay.core.database
so the value in alembic.ini is only a fallback for CLI usage.
"""

import os

from alembic import context
from sqlalchemy import engine_from_config, pool
from sqlmodel import SQLModel

# Import all models so their tables are registered on metadata
from kickpay.models.card import Card  # noqa: F401
from kickpay.models.coupon import Coupon, CouponGroup  # noqa: F401
from kickpay.models.dunning import Dunning  # noqa: F401
from kickpay.models.payment_key import PaymentKey  # noqa: F401
from kickpay.models.record import Record  # noqa: F401

config = context.config

# Override sqlalchemy.url from DATABASE_URL env var (used in container deployments)
database_url = os.environ.get("DATABASE_URL")
if database_url:
    config.set_main_option("sqlalchemy.url", database_url)

# Logging is owned by kickpay.core.structured_logging; no fileConfig here.

target_metadata = SQLModel.metadata


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL to stdout)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode (connect to DB)."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
