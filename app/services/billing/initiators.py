"""Checkout, billing-portal, cancel-at-period-end and resync flows."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.clients.stripe_billing import PORTAL_RETURN_PATH, StripeBillingClient
from app.clients.supabase_auth import SupabaseAuthClient
from app.core.errors import BillingError, ProviderError
from app.models.subscription import SubscriptionStatus, SubscriptionTier
from app.services.billing.events import StripeSubscription
from app.services.billing.reconciler import SubscriptionReconciler
from app.services.billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)

CANCEL_MESSAGE = "Subscription will be canceled at the end of the current period"
RESYNC_STATUSES = frozenset({"active", "trialing"})


def mask_email(email: str | None) -> str:
    if not email:
        return "*"
    domain = email.split("@")[-1] if "@" in email else ""
    return f"*@{domain}" if domain else "*"


async def create_checkout_session(
    *,
    price_id: str,
    user_id: str,
    origin: str,
    repository: SubscriptionRepository,
    stripe_client: StripeBillingClient,
    identity: SupabaseAuthClient,
) -> str:
    """Resolve or create the user's Stripe customer and open a Checkout session.

    A newly created customer is persisted right away on a placeholder
    ``free``/``none`` row so retries reuse it instead of creating another.
    """
    existing = await repository.get_by_user(user_id)
    customer_id = existing.stripe_customer_id if existing else None
    if not customer_id:
        user = await identity.get_user(user_id)
        if user is None:
            raise BillingError("User not found", code="E_UNKNOWN_USER")
        customer = stripe_client.create_customer(email=user.email, user_id=user_id)
        customer_id = customer["id"]
        fields = {"stripe_customer_id": customer_id}
        if existing is None:
            fields.update(
                tier=SubscriptionTier.FREE.value,
                status=SubscriptionStatus.NONE.value,
            )
        await repository.upsert_for_user(user_id, fields)
        logger.info(
            "billing.customer.created",
            extra={
                "user_id": user_id,
                "customer_id": customer_id,
                "email_domain": mask_email(user.email),
            },
        )

    session = stripe_client.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        user_id=user_id,
        origin=origin,
    )
    logger.info(
        "billing.checkout.created",
        extra={"user_id": user_id, "session_id": session["id"], "price_id": price_id},
    )
    return session["id"]


async def create_portal_session(
    *,
    user_id: str,
    return_url: str | None,
    origin: str,
    repository: SubscriptionRepository,
    stripe_client: StripeBillingClient,
) -> str:
    row = await repository.get_by_user(user_id)
    if row is None or not row.stripe_customer_id:
        raise BillingError(
            "No subscription found for user or missing Stripe customer ID",
            code="E_NO_CUSTOMER",
        )
    target = return_url or f"{origin.rstrip('/')}{PORTAL_RETURN_PATH}"
    session = stripe_client.create_portal_session(
        customer_id=row.stripe_customer_id, return_url=target
    )
    logger.info(
        "billing.portal.created",
        extra={"user_id": user_id, "customer_id": row.stripe_customer_id},
    )
    return session["url"]


async def cancel_at_period_end(
    *,
    subscription_id: str,
    user_id: str,
    repository: SubscriptionRepository,
    stripe_client: StripeBillingClient,
) -> None:
    """Ask Stripe to cancel at period end, then mirror the flag on the caller's own row."""
    row = await repository.get_by_subscription_id(subscription_id)
    if row is None or row.user_id != user_id:
        logger.warning(
            "billing.cancel.ownership_mismatch",
            extra={"user_id": user_id, "subscription_id": subscription_id},
        )
        raise BillingError("Subscription not found for user", code="E_NOT_OWNER")
    stripe_client.cancel_at_period_end(subscription_id)
    matched = await repository.update_by_subscription_id(
        subscription_id,
        {
            "cancel_at_period_end": True,
            "status": SubscriptionStatus.ACTIVE_UNTIL_PERIOD_END.value,
        },
        user_id=user_id,
    )
    if not matched:
        raise BillingError("Failed to update subscription in database", code="E_PERSIST")
    logger.info(
        "billing.cancel.scheduled",
        extra={"user_id": user_id, "subscription_id": subscription_id},
    )


@dataclass(frozen=True)
class ResyncResult:
    user_id: str
    synced: int


async def resync_subscriptions(
    *,
    email: str,
    reconciler: SubscriptionReconciler,
    stripe_client: StripeBillingClient,
    identity: SupabaseAuthClient,
) -> ResyncResult:
    """Rebuild a user's row from every active or trialing Stripe subscription under their email."""
    user = await identity.find_user_by_email(email)
    if user is None:
        raise BillingError(f"User not found with email: {email}", code="E_UNKNOWN_USER")
    customers = stripe_client.list_customers_by_email(email)
    if not customers:
        raise BillingError("No Stripe customer found for this email", code="E_NO_CUSTOMER")

    synced = 0
    for customer in customers:
        try:
            subscriptions = stripe_client.list_subscriptions(customer["id"])
        except ProviderError:
            logger.warning("billing.resync.list_failed", extra={"customer_id": customer["id"]})
            continue
        for payload in subscriptions:
            if payload.get("status") not in RESYNC_STATUSES:
                continue
            subscription = StripeSubscription.model_validate(
                {**payload, "customer": payload.get("customer") or customer["id"]}
            )
            await reconciler.reconcile(subscription, user.id)
            synced += 1
    logger.info(
        "billing.resync.completed",
        extra={"user_id": user.id, "synced": synced, "email_domain": mask_email(email)},
    )
    return ResyncResult(user_id=user.id, synced=synced)
