"""Persistence helpers for feedback rows awaiting email notification."""

from __future__ import annotations

from datetime import UTC, datetime

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.feedback import Feedback


class FeedbackRepository:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def list_pending(self, *, since: datetime, limit: int) -> list[Feedback]:
        """Oldest-first rows created at or after ``since`` with no email sent yet."""
        stmt = (
            select(Feedback)
            .where(Feedback.created_at >= since)
            .where(Feedback.email_sent_at.is_(None))
            .order_by(Feedback.created_at.asc())
            .limit(limit)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def mark_sent(self, reference_number: str, *, sent_at: datetime | None = None) -> int:
        stmt = (
            update(Feedback)
            .where(Feedback.reference_number == reference_number)
            .where(Feedback.email_sent_at.is_(None))
            .values(email_sent_at=sent_at or datetime.now(UTC))
        )
        result = await self._session.execute(stmt)
        await self._session.commit()
        return result.rowcount or 0

    async def rollback(self) -> None:
        await self._session.rollback()
