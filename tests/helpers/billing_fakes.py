from __future__ import annotations

import json
import time
from typing import Any

from app.clients.supabase_auth import AuthUser
from app.core.errors import EmailDeliveryError, ProviderError
from app.services.billing.signature import compute_signature

WEBHOOK_SECRET = "whsec_test_secret"  # noqa: S105 - test fixture value
SERVICE_ROLE_KEY = "service-role-test-key"  # noqa: S105 - test fixture value


def subscription_payload(
    subscription_id: str = "sub_123",
    *,
    status: str = "active",
    user_id: str | None = "user-1",
    customer: str = "cus_123",
    price_id: str = "price_premium",
    created: int = 1_700_000_000,
    period_end: int = 1_702_592_000,
    cancel_at_period_end: bool = False,
) -> dict[str, Any]:
    return {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "created": created,
        "current_period_end": period_end,
        "cancel_at_period_end": cancel_at_period_end,
        "metadata": {"user_id": user_id} if user_id else {},
        "items": {"data": [{"id": "si_1", "price": {"id": price_id}}]},
    }


def envelope(event_id: str, event_type: str, obj: dict[str, Any]) -> dict[str, Any]:
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


def signed_request(
    payload: dict[str, Any], secret: str, *, timestamp: int | None = None
) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(payload).encode()
    ts = str(timestamp if timestamp is not None else int(time.time()))
    signature = compute_signature(body, ts, secret)
    return body, {"Stripe-Signature": f"t={ts},v1={signature}", "Content-Type": "application/json"}


class FakeStripeBilling:
    """In-memory stand-in for StripeBillingClient."""

    def __init__(self) -> None:
        self.subscriptions: dict[str, dict[str, Any]] = {}
        self.customers_by_email: dict[str, list[dict[str, Any]]] = {}
        self.customer_subscriptions: dict[str, list[dict[str, Any]]] = {}
        self.failing_customers: set[str] = set()
        self.created_customers: list[dict[str, Any]] = []
        self.checkout_calls: list[dict[str, Any]] = []
        self.portal_calls: list[dict[str, Any]] = []
        self.canceled: list[str] = []
        self.retrieved: list[str] = []
        self.cancel_error: ProviderError | None = None

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        self.retrieved.append(subscription_id)
        return self.subscriptions[subscription_id]

    def create_customer(self, *, email: str | None, user_id: str) -> dict[str, Any]:
        customer = {"id": f"cus_new_{len(self.created_customers) + 1}", "email": email}
        self.created_customers.append({**customer, "user_id": user_id})
        return customer

    def create_checkout_session(self, **kwargs: Any) -> dict[str, Any]:
        self.checkout_calls.append(kwargs)
        return {"id": f"cs_test_{len(self.checkout_calls)}"}

    def create_portal_session(self, *, customer_id: str, return_url: str) -> dict[str, Any]:
        self.portal_calls.append({"customer_id": customer_id, "return_url": return_url})
        return {"url": f"https://billing.stripe.test/session/{customer_id}"}

    def cancel_at_period_end(self, subscription_id: str) -> dict[str, Any]:
        if self.cancel_error is not None:
            raise self.cancel_error
        self.canceled.append(subscription_id)
        return {"id": subscription_id, "cancel_at_period_end": True}

    def list_customers_by_email(self, email: str) -> list[dict[str, Any]]:
        return self.customers_by_email.get(email, [])

    def list_subscriptions(self, customer_id: str) -> list[dict[str, Any]]:
        if customer_id in self.failing_customers:
            raise ProviderError("Stripe API error: 500 - boom", http_status=500)
        return self.customer_subscriptions.get(customer_id, [])


class FakeIdentity:
    def __init__(self, users: list[AuthUser] | None = None) -> None:
        self.users = {user.id: user for user in users or []}
        self.lookups: list[str] = []

    async def get_user(self, user_id: str) -> AuthUser | None:
        self.lookups.append(user_id)
        return self.users.get(user_id)

    async def find_user_by_email(self, email: str) -> AuthUser | None:
        target = email.lower()
        for user in self.users.values():
            if (user.email or "").lower() == target:
                return user
        return None


class FakeEmailClient:
    def __init__(self, *, fail_subjects: tuple[str, ...] = ()) -> None:
        self.sent: list[Any] = []
        self._fail_subjects = fail_subjects

    async def send(self, email) -> str | None:
        if any(marker in email.subject for marker in self._fail_subjects):
            raise EmailDeliveryError("Resend request failed: 422", code="E_EMAIL_REJECTED")
        self.sent.append(email)
        return f"email_{len(self.sent)}"
