"""Persistence for subscription rows and processed webhook events."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.subscription import ProcessedEvent, Subscription

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """Async repository over the ``subscriptions`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_user(self, user_id: str) -> Subscription | None:
        result = await self._session.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_by_subscription_id(self, subscription_id: str) -> Subscription | None:
        result = await self._session.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def upsert_for_user(self, user_id: str, fields: dict[str, Any]) -> Subscription:
        """Merge ``fields`` into the user's row, inserting it when absent.

        ``user_id`` is unique, so a concurrent insert for the same user surfaces
        as an IntegrityError; the row is then re-read and updated instead.
        """
        existing = await self.get_by_user(user_id)
        if existing is None:
            row = Subscription(user_id=user_id, **fields)
            self._session.add(row)
            try:
                await self._session.commit()
                return row
            except IntegrityError:
                await self._session.rollback()
                logger.info("subscriptions.upsert.conflict", extra={"user_id": user_id})
                existing = await self.get_by_user(user_id)
                if existing is None:
                    raise
        for key, value in fields.items():
            setattr(existing, key, value)
        existing.updated_at = datetime.now(UTC)
        self._session.add(existing)
        await self._session.commit()
        return existing

    async def update_by_subscription_id(
        self,
        subscription_id: str,
        fields: dict[str, Any],
        *,
        user_id: str | None = None,
    ) -> int:
        """Apply a narrow update by Stripe subscription id; return the matched row count."""
        stmt = update(Subscription).where(Subscription.stripe_subscription_id == subscription_id)
        if user_id is not None:
            stmt = stmt.where(Subscription.user_id == user_id)
        values = {**fields, "updated_at": datetime.now(UTC)}
        result = await self._session.execute(stmt.values(**values))
        await self._session.commit()
        return result.rowcount or 0


class ProcessedEventRepository:
    """Tracks webhook event ids already applied."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def seen(self, event_id: str) -> bool:
        result = await self._session.execute(
            select(ProcessedEvent).where(ProcessedEvent.event_id == event_id)
        )
        return result.scalar_one_or_none() is not None

    async def mark(self, event_id: str, event_type: str) -> None:
        self._session.add(ProcessedEvent(event_id=event_id, event_type=event_type))
        try:
            await self._session.commit()
        except IntegrityError:
            # Concurrent delivery of the same event already recorded it.
            await self._session.rollback()
