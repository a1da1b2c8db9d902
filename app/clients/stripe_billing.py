"""Thin wrapper over the Stripe SDK for the billing flows."""

from __future__ import annotations

import logging
from typing import Any

import stripe

from app.core.errors import ProviderError

logger = logging.getLogger(__name__)

CHECKOUT_SUCCESS_PATH = "/subscription/success?session_id={CHECKOUT_SESSION_ID}"
CHECKOUT_CANCEL_PATH = "/subscription"
PORTAL_RETURN_PATH = "/account"


def _as_dict(obj: Any) -> dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, dict):
        return obj
    return obj.to_dict()


class StripeBillingClient:
    """Stripe calls used by checkout, portal, cancel, resync and webhook handling.

    Every call passes the API key explicitly so the SDK's global ``stripe.api_key``
    is never mutated. SDK failures are re-raised as ``ProviderError`` carrying
    the provider's error body.
    """

    def __init__(self, api_key: str, *, sdk: Any = stripe) -> None:
        if not api_key:
            raise ValueError("STRIPE_SECRET_KEY is required to create a StripeBillingClient.")
        self._api_key = api_key
        self._sdk = sdk

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        return self._call(
            "subscription.retrieve",
            lambda: self._sdk.Subscription.retrieve(subscription_id, api_key=self._api_key),
        )

    def create_customer(self, *, email: str | None, user_id: str) -> dict[str, Any]:
        params: dict[str, Any] = {"metadata": {"user_id": user_id}}
        if email:
            params["email"] = email
        return self._call(
            "customer.create",
            lambda: self._sdk.Customer.create(api_key=self._api_key, **params),
        )

    def create_checkout_session(
        self,
        *,
        customer_id: str,
        price_id: str,
        user_id: str,
        origin: str,
    ) -> dict[str, Any]:
        """Create a subscription-mode Checkout session that carries the user correlator."""
        base = origin.rstrip("/")
        return self._call(
            "checkout.create",
            lambda: self._sdk.checkout.Session.create(
                api_key=self._api_key,
                mode="subscription",
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                allow_promotion_codes=True,
                billing_address_collection="required",
                success_url=f"{base}{CHECKOUT_SUCCESS_PATH}",
                cancel_url=f"{base}{CHECKOUT_CANCEL_PATH}",
                metadata={"user_id": user_id},
                subscription_data={"metadata": {"user_id": user_id}},
            ),
        )

    def create_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]:
        return self._call(
            "portal.create",
            lambda: self._sdk.billing_portal.Session.create(
                api_key=self._api_key,
                customer=customer_id,
                return_url=return_url,
            ),
        )

    def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        return self._call(
            "subscription.cancel_at_period_end",
            lambda: self._sdk.Subscription.modify(
                subscription_id,
                api_key=self._api_key,
                cancel_at_period_end=True,
            ),
        )

    def list_customers_by_email(self, email: str) -> list[dict[str, Any]]:
        result = self._call(
            "customer.list",
            lambda: self._sdk.Customer.list(api_key=self._api_key, email=email, limit=100),
        )
        return [_as_dict(entry) for entry in result.get("data", [])]

    def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        result = self._call(
            "subscription.list",
            lambda: self._sdk.Subscription.list(
                api_key=self._api_key, customer=customer_id, limit=100
            ),
        )
        return [_as_dict(entry) for entry in result.get("data", [])]

    def _call(self, operation: str, request) -> dict[str, Any]:  # noqa: ANN001
        try:
            return _as_dict(request())
        except self._sdk.StripeError as exc:
            http_status = getattr(exc, "http_status", None)
            body = getattr(exc, "json_body", None) or getattr(exc, "http_body", None)
            logger.warning(
                "stripe.request.failed",
                extra={"operation": operation, "http_status": http_status, "error": str(exc)},
            )
            raise ProviderError(
                f"Stripe API error: {http_status or 'unknown'} - {exc}",
                http_status=http_status,
                body=body,
            ) from exc
