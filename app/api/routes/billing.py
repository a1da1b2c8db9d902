"""Stripe checkout, billing portal, cancellation, resync and webhook endpoints."""

from __future__ import annotations

import hmac
import json
import logging

from fastapi import APIRouter, Depends, Header, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import (
    get_identity_client,
    get_optional_stripe_client,
    get_stripe_client,
    require_billing_database,
)
from app.clients.stripe_billing import StripeBillingClient
from app.clients.supabase_auth import SupabaseAuthClient
from app.config import Settings, get_settings
from app.core.errors import BillingError, ConfigurationError, ServiceError
from app.observability.metrics import metrics
from app.services.billing import initiators
from app.services.billing.events import EventDecodeError, decode_event
from app.services.billing.reconciler import SubscriptionReconciler
from app.services.billing.repository import ProcessedEventRepository, SubscriptionRepository
from app.services.billing.router import EventRouter
from app.services.billing.signature import verify

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/billing")


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CheckoutSessionRequest(_CamelModel):
    price_id: str | None = Field(default=None, alias="priceId")
    user_id: str | None = Field(default=None, alias="userId")


class CheckoutSessionResponse(_CamelModel):
    session_id: str = Field(alias="sessionId")


class PortalSessionRequest(_CamelModel):
    user_id: str | None = Field(default=None, alias="userId")
    return_url: str | None = Field(default=None, alias="returnUrl")


class PortalSessionResponse(BaseModel):
    url: str


class CancelAtPeriodEndRequest(_CamelModel):
    stripe_subscription_id: str | None = Field(default=None, alias="stripeSubscriptionId")
    user_id: str | None = Field(default=None, alias="userId")


class CancelAtPeriodEndResponse(BaseModel):
    success: bool
    message: str


class ResyncRequest(_CamelModel):
    user_email: str | None = Field(default=None, alias="userEmail")


class ResyncResponse(_CamelModel):
    success: bool
    message: str
    user_id: str = Field(alias="userId")
    synced: int


class WebhookResponse(BaseModel):
    received: bool
    duplicate: bool = False


def _resolve_origin(origin: str | None, config: Settings) -> str:
    return origin or config.default_site_url


@router.post(
    "/checkout-session",
    response_model=CheckoutSessionResponse,
    response_model_by_alias=True,
)
async def create_checkout_session(
    payload: CheckoutSessionRequest,
    origin: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(require_billing_database),
    stripe_client: StripeBillingClient = Depends(get_stripe_client),
    identity: SupabaseAuthClient = Depends(get_identity_client),
) -> CheckoutSessionResponse:
    """Create a subscription-mode Checkout session for the user."""
    if not payload.price_id or not payload.user_id:
        raise BillingError("Missing required parameters: priceId and userId", code="E_INPUT")
    session_id = await initiators.create_checkout_session(
        price_id=payload.price_id,
        user_id=payload.user_id,
        origin=_resolve_origin(origin, config),
        repository=SubscriptionRepository(db),
        stripe_client=stripe_client,
        identity=identity,
    )
    metrics.increment("billing.checkout.created")
    return CheckoutSessionResponse(session_id=session_id)


@router.post("/portal-session", response_model=PortalSessionResponse)
async def create_portal_session(
    payload: PortalSessionRequest,
    origin: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(require_billing_database),
    stripe_client: StripeBillingClient = Depends(get_stripe_client),
) -> PortalSessionResponse:
    """Open a Stripe billing portal session for the user's customer."""
    if not payload.user_id:
        raise BillingError("Missing required parameter: userId", code="E_INPUT")
    url = await initiators.create_portal_session(
        user_id=payload.user_id,
        return_url=payload.return_url,
        origin=_resolve_origin(origin, config),
        repository=SubscriptionRepository(db),
        stripe_client=stripe_client,
    )
    metrics.increment("billing.portal.created")
    return PortalSessionResponse(url=url)


@router.post("/cancel-at-period-end", response_model=CancelAtPeriodEndResponse)
async def cancel_at_period_end(
    payload: CancelAtPeriodEndRequest,
    db: AsyncSession = Depends(require_billing_database),
    stripe_client: StripeBillingClient = Depends(get_stripe_client),
) -> CancelAtPeriodEndResponse:
    if not payload.stripe_subscription_id or not payload.user_id:
        raise BillingError(
            "Missing required parameters: stripeSubscriptionId and userId", code="E_INPUT"
        )
    await initiators.cancel_at_period_end(
        subscription_id=payload.stripe_subscription_id,
        user_id=payload.user_id,
        repository=SubscriptionRepository(db),
        stripe_client=stripe_client,
    )
    metrics.increment("billing.cancel.scheduled")
    return CancelAtPeriodEndResponse(success=True, message=initiators.CANCEL_MESSAGE)


def _require_service_role(authorization: str | None, config: Settings) -> None:
    if not config.supabase_service_role_key:
        raise ConfigurationError("Supabase configuration missing")
    expected = f"Bearer {config.supabase_service_role_key}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise ServiceError("Unauthorized", code="E_UNAUTHORIZED", status_code=401)


@router.post("/subscriptions/resync", response_model=ResyncResponse, response_model_by_alias=True)
async def resync_subscription(
    payload: ResyncRequest,
    authorization: str | None = Header(default=None),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(require_billing_database),
    stripe_client: StripeBillingClient = Depends(get_stripe_client),
    identity: SupabaseAuthClient = Depends(get_identity_client),
) -> ResyncResponse:
    """Service-role repair: rebuild a user's row from Stripe by email."""
    _require_service_role(authorization, config)
    if not payload.user_email:
        raise BillingError("Missing required parameter: userEmail", code="E_INPUT")
    result = await initiators.resync_subscriptions(
        email=payload.user_email,
        reconciler=SubscriptionReconciler.for_session(db),
        stripe_client=stripe_client,
        identity=identity,
    )
    return ResyncResponse(
        success=True,
        message="Subscription status updated successfully",
        user_id=result.user_id,
        synced=result.synced,
    )


def _reject_webhook(reason: str, message: str, *, has_signature: bool) -> ServiceError:
    logger.warning(f"stripe.webhook.{reason}")
    metrics.increment(f"stripe.webhook.{reason}", tags={"has_signature": has_signature})
    metrics.alert(
        f"stripe.webhook.{reason}",
        value=1.0,
        threshold=0.0,
        severity="warning",
        tags={"has_signature": has_signature},
    )
    return ServiceError(message, code="E_WEBHOOK")


@router.post("/stripe/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(require_billing_database),
    stripe_client: StripeBillingClient | None = Depends(get_optional_stripe_client),
) -> WebhookResponse:
    """Verify, decode and route a Stripe event; redelivered event ids are acknowledged only."""
    body = await request.body()
    if not config.stripe_webhook_secret:
        raise ConfigurationError("Missing required environment variables")
    if not stripe_signature:
        raise _reject_webhook("signature_missing", "Missing Stripe signature", has_signature=False)
    tolerance = config.stripe_webhook_tolerance_seconds or None
    if not verify(body, stripe_signature, config.stripe_webhook_secret, tolerance=tolerance):
        raise _reject_webhook("signature_invalid", "Invalid webhook signature", has_signature=True)
    try:
        event = decode_event(json.loads(body))
    except (ValueError, EventDecodeError) as exc:
        raise _reject_webhook("invalid_payload", "Invalid payload", has_signature=True) from exc

    processed = ProcessedEventRepository(db)
    if await processed.seen(event.id):
        logger.info("stripe.webhook.duplicate", extra={"event_id": event.id, "type": event.type})
        metrics.increment("stripe.webhook.duplicate", tags={"type": event.type})
        return WebhookResponse(received=True, duplicate=True)

    event_router = EventRouter(SubscriptionReconciler.for_session(db), stripe_client)
    outcome = await event_router.route(event)
    await processed.mark(event.id, event.type)
    logger.info(
        "stripe.webhook.received",
        extra={
            "event_id": event.id,
            "type": event.type,
            "handled": outcome.handled,
            "note": outcome.note,
        },
    )
    metrics.increment("stripe.webhook.received", tags={"type": event.type})
    return WebhookResponse(received=True, duplicate=False)
