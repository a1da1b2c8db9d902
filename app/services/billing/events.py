"""Typed decoding of Stripe webhook envelopes into a closed set of event variants."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")


class CheckoutSession(_StripeObject):
    id: str
    subscription: str | None = None
    customer: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return (self.metadata or {}).get("user_id") or None


class StripeSubscription(_StripeObject):
    id: str
    status: str
    customer: str | None = None
    created: int | None = None
    current_period_end: int | None = None
    cancel_at_period_end: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)
    items: dict[str, Any] = Field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return (self.metadata or {}).get("user_id") or None

    def _first_item(self) -> dict[str, Any]:
        entries = (self.items or {}).get("data") or []
        return entries[0] if entries and isinstance(entries[0], dict) else {}

    @property
    def price_id(self) -> str | None:
        return (self._first_item().get("price") or {}).get("id")

    @property
    def period_end(self) -> int | None:
        """Current period end; newer API versions report it per subscription item."""
        if self.current_period_end:
            return self.current_period_end
        return self._first_item().get("current_period_end")


class StripeInvoice(_StripeObject):
    id: str
    subscription: str | None = None
    customer: str | None = None
    attempt_count: int = 0
    parent: dict[str, Any] | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return details.get("subscription")


class _Event(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class CheckoutSessionCompleted(_Event):
    type: Literal["checkout.session.completed"]
    session: CheckoutSession


class SubscriptionCreated(_Event):
    type: Literal["customer.subscription.created"]
    subscription: StripeSubscription


class SubscriptionUpdated(_Event):
    type: Literal["customer.subscription.updated"]
    subscription: StripeSubscription


class SubscriptionDeleted(_Event):
    type: Literal["customer.subscription.deleted"]
    subscription: StripeSubscription


class InvoicePaymentSucceeded(_Event):
    type: Literal["invoice.payment_succeeded"]
    invoice: StripeInvoice


class InvoicePaymentFailed(_Event):
    type: Literal["invoice.payment_failed"]
    invoice: StripeInvoice


class UnhandledEvent(_Event):
    type: str


WebhookEvent = (
    CheckoutSessionCompleted
    | SubscriptionCreated
    | SubscriptionUpdated
    | SubscriptionDeleted
    | InvoicePaymentSucceeded
    | InvoicePaymentFailed
    | UnhandledEvent
)

# event type -> (variant, name of the field holding data.object)
_VARIANTS: dict[str, tuple[type[_Event], str]] = {
    "checkout.session.completed": (CheckoutSessionCompleted, "session"),
    "customer.subscription.created": (SubscriptionCreated, "subscription"),
    "customer.subscription.updated": (SubscriptionUpdated, "subscription"),
    "customer.subscription.deleted": (SubscriptionDeleted, "subscription"),
    "invoice.payment_succeeded": (InvoicePaymentSucceeded, "invoice"),
    "invoice.payment_failed": (InvoicePaymentFailed, "invoice"),
}

HANDLED_EVENT_TYPES = frozenset(_VARIANTS)


class EventDecodeError(ValueError):
    """Raised when a webhook envelope cannot be decoded."""


def decode_event(envelope: Any) -> WebhookEvent:
    """Decode a parsed webhook JSON envelope into its typed variant."""
    if not isinstance(envelope, dict):
        raise EventDecodeError("Webhook payload must be a JSON object.")
    event_id = envelope.get("id")
    event_type = envelope.get("type")
    if not isinstance(event_id, str) or not isinstance(event_type, str):
        raise EventDecodeError("Webhook payload is missing id or type.")
    variant = _VARIANTS.get(event_type)
    if variant is None:
        return UnhandledEvent(id=event_id, type=event_type)
    model, field_name = variant
    data = envelope.get("data") or {}
    obj = data.get("object") if isinstance(data, dict) else None
    try:
        return model.model_validate({"id": event_id, "type": event_type, field_name: obj})
    except ValidationError as exc:
        raise EventDecodeError(f"Malformed {event_type} payload: {exc.error_count()} errors") from exc
