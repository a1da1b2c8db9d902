"""FastAPI dependencies wiring settings into clients and repositories."""

from __future__ import annotations

from collections.abc import AsyncIterator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.clients.resend import ResendClient
from app.clients.stripe_billing import StripeBillingClient
from app.clients.supabase_auth import SupabaseAuthClient
from app.config import Settings, get_settings
from app.core.database import get_database
from app.core.errors import ConfigurationError


def _require_database(status_code: int):
    async def dependency(db: AsyncSession | None = Depends(get_database)) -> AsyncSession:
        if db is None:
            raise ConfigurationError("Database not configured", status_code=status_code)
        return db

    return dependency


require_billing_database = _require_database(400)
require_feedback_database = _require_database(500)


def get_stripe_client(config: Settings = Depends(get_settings)) -> StripeBillingClient:
    if not config.stripe_secret_key:
        raise ConfigurationError("Stripe secret key not configured")
    return StripeBillingClient(config.stripe_secret_key)


def get_optional_stripe_client(
    config: Settings = Depends(get_settings),
) -> StripeBillingClient | None:
    if not config.stripe_secret_key:
        return None
    return StripeBillingClient(config.stripe_secret_key)


async def get_identity_client(
    config: Settings = Depends(get_settings),
) -> AsyncIterator[SupabaseAuthClient]:
    if not config.supabase_url or not config.supabase_service_role_key:
        raise ConfigurationError("Supabase configuration missing")
    client = SupabaseAuthClient(
        config.supabase_url,
        config.supabase_service_role_key,
        timeout=config.http_timeout_seconds,
    )
    try:
        yield client
    finally:
        await client.aclose()


async def get_email_client(
    config: Settings = Depends(get_settings),
) -> AsyncIterator[ResendClient]:
    if not config.resend_api_key:
        raise ConfigurationError("Resend API key not configured", status_code=500)
    client = ResendClient(
        config.resend_api_key,
        base_url=config.resend_base_url,
        timeout=config.http_timeout_seconds,
    )
    try:
        yield client
    finally:
        await client.aclose()
