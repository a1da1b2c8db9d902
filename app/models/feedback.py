"""SQLModel mapping for user feedback submissions."""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

import sqlalchemy as sa
from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlmodel import Field, SQLModel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Feedback(SQLModel, table=True):
    """Feedback row written by the web app; read by the email sweep."""

    __tablename__ = "feedback"
    __table_args__ = (
        sa.UniqueConstraint("reference_number", name="uq_feedback_reference_number"),
        sa.Index("ix_feedback_created_at", "created_at"),
        sa.Index("ix_feedback_email_sent_at", "email_sent_at"),
    )

    id: UUID = Field(default_factory=uuid4, sa_column=Column(sa.Uuid, primary_key=True))
    user_id: str | None = Field(default=None, sa_column=Column(String(length=255), nullable=True))
    reference_number: str = Field(sa_column=Column(String(length=32), nullable=False))
    feedback_type: str = Field(sa_column=Column(String(length=64), nullable=False))
    priority_level: str = Field(sa_column=Column(String(length=32), nullable=False))
    title: str = Field(sa_column=Column(Text, nullable=False))
    description: str = Field(sa_column=Column(Text, nullable=False))
    rating: int | None = Field(default=None, sa_column=Column(Integer, nullable=True))
    poll_response: str | None = Field(default=None, sa_column=Column(Text, nullable=True))
    contact_email: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    contact_name: str | None = Field(
        default=None, sa_column=Column(String(length=255), nullable=True)
    )
    status: str = Field(
        default="open", sa_column=Column(String(length=32), nullable=False, server_default="open")
    )
    email_sent_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
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
