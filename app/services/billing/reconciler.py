"""Map Stripe subscription state onto the local per-user subscription row."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.subscription import Subscription, SubscriptionStatus, SubscriptionTier
from app.observability.metrics import metrics
from app.services.billing.events import StripeSubscription
from app.services.billing.repository import SubscriptionRepository

logger = logging.getLogger(__name__)

# invoice.payment_failed attempts at which the subscription is treated as canceled
MAX_PAYMENT_ATTEMPTS = 3


def _from_epoch(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def derive_status(subscription: StripeSubscription) -> str:
    """Stripe status, except active + cancel_at_period_end becomes active_until_period_end."""
    if subscription.cancel_at_period_end and subscription.status == SubscriptionStatus.ACTIVE.value:
        return SubscriptionStatus.ACTIVE_UNTIL_PERIOD_END.value
    return subscription.status


def failed_payment_status(attempt_count: int) -> str:
    if attempt_count >= MAX_PAYMENT_ATTEMPTS:
        return SubscriptionStatus.CANCELED.value
    return SubscriptionStatus.PAST_DUE.value


def build_record(subscription: StripeSubscription) -> dict[str, Any]:
    """Return the Stripe-derived columns for a paid subscription."""
    return {
        "tier": SubscriptionTier.PREMIUM.value,
        "status": derive_status(subscription),
        "start_date": _from_epoch(subscription.created),
        "end_date": _from_epoch(subscription.period_end),
        "stripe_customer_id": subscription.customer,
        "stripe_price_id": subscription.price_id,
        "stripe_subscription_id": subscription.id,
        "cancel_at_period_end": bool(subscription.cancel_at_period_end),
    }


class SubscriptionReconciler:
    """Applies webhook-derived changes to the ``subscriptions`` table."""

    def __init__(self, repository: SubscriptionRepository) -> None:
        self._repository = repository

    @classmethod
    def for_session(cls, session: AsyncSession) -> "SubscriptionReconciler":
        return cls(SubscriptionRepository(session))

    async def reconcile(self, subscription: StripeSubscription, user_id: str) -> Subscription:
        record = build_record(subscription)
        row = await self._repository.upsert_for_user(user_id, record)
        logger.info(
            "subscriptions.reconciled",
            extra={
                "user_id": user_id,
                "subscription_id": subscription.id,
                "status": record["status"],
                "price_id": record["stripe_price_id"],
            },
        )
        metrics.increment("subscriptions.reconciled", tags={"status": record["status"]})
        return row

    async def mark_canceled(self, subscription_id: str, *, now: datetime | None = None) -> int:
        ended_at = now or datetime.now(UTC)
        return await self._narrow_update(
            subscription_id,
            {
                "status": SubscriptionStatus.CANCELED.value,
                "end_date": ended_at,
                "cancel_at_period_end": False,
            },
            reason="deleted",
        )

    async def mark_payment_succeeded(self, subscription_id: str) -> int:
        return await self._narrow_update(
            subscription_id,
            {"status": SubscriptionStatus.ACTIVE.value},
            reason="payment_succeeded",
        )

    async def mark_payment_failed(self, subscription_id: str, attempt_count: int) -> int:
        return await self._narrow_update(
            subscription_id,
            {"status": failed_payment_status(attempt_count)},
            reason="payment_failed",
        )

    async def _narrow_update(self, subscription_id: str, fields: dict[str, Any], *, reason: str) -> int:
        matched = await self._repository.update_by_subscription_id(subscription_id, fields)
        if not matched:
            logger.warning(
                "subscriptions.update.no_match",
                extra={"subscription_id": subscription_id, "reason": reason},
            )
        else:
            logger.info(
                "subscriptions.updated",
                extra={
                    "subscription_id": subscription_id,
                    "reason": reason,
                    "status": fields.get("status"),
                },
            )
        metrics.increment(
            "subscriptions.updated", tags={"reason": reason, "matched": bool(matched)}
        )
        return matched
