"""Alembic environment for the billing and feedback tables."""

from __future__ import annotations

import asyncio
import logging
import os
import ssl
from logging.config import fileConfig
from typing import Any

import certifi
from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.engine.url import URL, make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_engine_from_config
from sqlmodel import SQLModel

from app.config import settings
from app.models import feedback, subscription  # noqa: F401 - register tables on the metadata

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("billing.alembic")
logger.setLevel(logging.INFO)
target_metadata = SQLModel.metadata

SUPABASE_POOLER_PORT = 6543


def _supabase_ssl_context() -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    ca_file = os.environ.get("ALEMBIC_SUPABASE_CA_FILE")
    ctx.load_verify_locations(cafile=ca_file or certifi.where())
    return ctx


def _normalize(url: URL) -> tuple[str, dict[str, Any]]:
    """Point Supabase hosts at the pooled port with TLS; leave other hosts untouched."""
    if "supabase.co" not in (url.host or "").lower():
        return url.render_as_string(hide_password=False), {}
    query = {k: v for k, v in url.query.items() if k not in {"ssl", "sslmode"}}
    normalized = url.set(port=SUPABASE_POOLER_PORT, query=query)
    logger.info("Using Supabase pooled port with TLS for migrations.")
    return normalized.render_as_string(hide_password=False), {"ssl": _supabase_ssl_context()}


def _resolve_database_config() -> tuple[str, dict[str, Any]]:
    candidates = [
        ("environment variable", os.environ.get("DATABASE_URL")),
        ("alembic.ini", config.get_main_option("sqlalchemy.url")),
        ("app settings", settings.database_url),
    ]
    for source, value in candidates:
        if not value:
            continue
        parsed = make_url(value)
        logger.info(
            "Alembic resolved DATABASE_URL from %s: %s",
            source,
            parsed.render_as_string(hide_password=True),
        )
        return _normalize(parsed)
    raise RuntimeError("DATABASE_URL must be set to run migrations.")


def run_migrations_offline() -> None:
    url, _ = _resolve_database_config()
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, compare_type=True)

    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    configuration = config.get_section(config.config_ini_section) or {}
    url, connect_args = _resolve_database_config()
    configuration["sqlalchemy.url"] = url
    connectable: AsyncEngine = async_engine_from_config(
        configuration,
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
        connect_args=connect_args,
    )

    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
