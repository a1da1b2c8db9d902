"""SQLModel mapping for per-user subscription state mirrored from Stripe."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Boolean, Column, DateTime, String
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SubscriptionTier(str, Enum):
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    """Local status values; other Stripe statuses are stored verbatim."""

    NONE = "none"
    ACTIVE = "active"
    ACTIVE_UNTIL_PERIOD_END = "active_until_period_end"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


class Subscription(SQLModel, table=True):
    """One row per user; correlated with Stripe by customer and subscription id."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        sa.UniqueConstraint("user_id", name="uq_subscriptions_user_id"),
        sa.UniqueConstraint("stripe_subscription_id", name="uq_subscriptions_stripe_subscription_id"),
        sa.Index("ix_subscriptions_stripe_customer_id", "stripe_customer_id"),
    )

    id: UUID = Field(default_factory=uuid4, sa_column=Column(sa.Uuid, primary_key=True))
    user_id: str = Field(sa_column=Column(String(length=255), nullable=False))
    tier: str = Field(
        default=SubscriptionTier.FREE.value,
        sa_column=Column(String(length=16), nullable=False, server_default="free"),
    )
    status: str = Field(
        default=SubscriptionStatus.NONE.value,
        sa_column=Column(String(length=64), nullable=False, server_default="none"),
    )
    stripe_customer_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    stripe_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    stripe_price_id: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    start_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    end_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    cancel_at_period_end: bool = Field(
        default=False, sa_column=Column(Boolean, nullable=False, server_default=sa.false())
    )
    created_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    updated_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(
            DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
        ),
    )


class ProcessedEvent(SQLModel, table=True):
    """Recorded Stripe webhook events for idempotency."""

    __tablename__ = "processed_events"

    event_id: str = Field(sa_column=Column(String(length=255), primary_key=True, nullable=False))
    event_type: str = Field(sa_column=Column(String(length=128), nullable=False))
    received_at: datetime = Field(
        default_factory=_utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
