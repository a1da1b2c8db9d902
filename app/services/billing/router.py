"""Dispatch decoded webhook events to the subscription reconciler."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.clients.stripe_billing import StripeBillingClient
from app.core.errors import ConfigurationError
from app.observability.metrics import metrics
from app.services.billing.events import (
    CheckoutSessionCompleted,
    InvoicePaymentFailed,
    InvoicePaymentSucceeded,
    StripeSubscription,
    SubscriptionCreated,
    SubscriptionDeleted,
    SubscriptionUpdated,
    WebhookEvent,
)
from app.services.billing.reconciler import SubscriptionReconciler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RouteOutcome:
    event_type: str
    handled: bool
    note: str | None = None


class EventRouter:
    """Routes the six recognised Stripe events; everything else is a logged no-op.

    Missing ``user_id`` correlators are dropped with a warning. Stripe and
    database failures propagate so the webhook answers with an error and
    Stripe redelivers the event.
    """

    def __init__(
        self,
        reconciler: SubscriptionReconciler,
        stripe_client: StripeBillingClient | None = None,
    ) -> None:
        self._reconciler = reconciler
        self._stripe = stripe_client

    async def route(self, event: WebhookEvent) -> RouteOutcome:
        if isinstance(event, CheckoutSessionCompleted):
            outcome = await self._checkout_completed(event)
        elif isinstance(event, (SubscriptionCreated, SubscriptionUpdated)):
            outcome = await self._subscription_changed(event.type, event.subscription)
        elif isinstance(event, SubscriptionDeleted):
            await self._reconciler.mark_canceled(event.subscription.id)
            outcome = RouteOutcome(event.type, handled=True)
        elif isinstance(event, (InvoicePaymentSucceeded, InvoicePaymentFailed)):
            outcome = await self._invoice(event)
        else:
            logger.info(
                "stripe.webhook.skipped_event", extra={"event_id": event.id, "type": event.type}
            )
            outcome = RouteOutcome(event.type, handled=False, note="unhandled_type")
        metrics.increment(
            "stripe.webhook.routed",
            tags={"type": outcome.event_type, "handled": outcome.handled, "note": outcome.note},
        )
        return outcome

    async def _checkout_completed(self, event: CheckoutSessionCompleted) -> RouteOutcome:
        session = event.session
        user_id = session.user_id
        if not user_id:
            return self._missing_correlator(event.type, session.id)
        if not session.subscription:
            logger.info(
                "stripe.checkout.no_subscription",
                extra={"session_id": session.id, "user_id": user_id},
            )
            return RouteOutcome(event.type, handled=False, note="no_subscription")
        if self._stripe is None:
            raise ConfigurationError("Stripe secret key not configured")
        payload = self._stripe.retrieve_subscription(session.subscription)
        subscription = StripeSubscription.model_validate(payload)
        await self._reconciler.reconcile(subscription, user_id)
        return RouteOutcome(event.type, handled=True)

    async def _subscription_changed(
        self, event_type: str, subscription: StripeSubscription
    ) -> RouteOutcome:
        user_id = subscription.user_id
        if not user_id:
            return self._missing_correlator(event_type, subscription.id)
        await self._reconciler.reconcile(subscription, user_id)
        return RouteOutcome(event_type, handled=True)

    async def _invoice(self, event: InvoicePaymentSucceeded | InvoicePaymentFailed) -> RouteOutcome:
        invoice = event.invoice
        subscription_id = invoice.subscription_id
        if not subscription_id:
            logger.info("stripe.invoice.no_subscription", extra={"invoice_id": invoice.id})
            return RouteOutcome(event.type, handled=False, note="no_subscription")
        if isinstance(event, InvoicePaymentFailed):
            await self._reconciler.mark_payment_failed(subscription_id, invoice.attempt_count)
        else:
            await self._reconciler.mark_payment_succeeded(subscription_id)
        return RouteOutcome(event.type, handled=True)

    def _missing_correlator(self, event_type: str, object_id: str) -> RouteOutcome:
        logger.warning(
            "stripe.webhook.missing_user_id",
            extra={"type": event_type, "object_id": object_id},
        )
        metrics.increment("stripe.webhook.missing_user_id", tags={"type": event_type})
        return RouteOutcome(event_type, handled=False, note="missing_user_id")
