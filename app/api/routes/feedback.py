"""Feedback notification endpoints: per-row dispatch and the cron sweep."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies import get_email_client, require_feedback_database
from app.clients.resend import ResendClient
from app.config import Settings, get_settings
from app.core.database import get_database
from app.services.feedback.notifications import FeedbackNotifier, FeedbackPayload
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.sweep import sweep_pending_feedback

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/feedback")


class FeedbackEmailResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    email_id: str | None = Field(default=None, alias="emailId")


class FeedbackSweepResponse(BaseModel):
    success: bool
    message: str
    processed: int
    errors: int


def get_notifier(
    config: Settings = Depends(get_settings),
    email_client: ResendClient = Depends(get_email_client),
) -> FeedbackNotifier:
    return FeedbackNotifier(
        email_client,
        from_address=config.feedback_email_from,
        recipients=config.feedback_recipients,
    )


@router.post("/email", response_model=FeedbackEmailResponse, response_model_by_alias=True)
async def send_feedback_email(
    payload: FeedbackPayload,
    notifier: FeedbackNotifier = Depends(get_notifier),
    db: AsyncSession | None = Depends(get_database),
) -> FeedbackEmailResponse:
    """Email one feedback submission and stamp the row when it is stored locally."""
    email_id = await notifier.send(payload)
    if db is not None:
        marked = await FeedbackRepository(db).mark_sent(payload.reference_number)
        if not marked:
            logger.info(
                "feedback.email.unmarked",
                extra={"reference_number": payload.reference_number},
            )
    return FeedbackEmailResponse(
        success=True,
        message="Feedback email sent successfully",
        email_id=email_id,
    )


@router.post("/sweep", response_model=FeedbackSweepResponse)
async def sweep_feedback(
    config: Settings = Depends(get_settings),
    db: AsyncSession = Depends(require_feedback_database),
    notifier: FeedbackNotifier = Depends(get_notifier),
) -> FeedbackSweepResponse:
    result = await sweep_pending_feedback(
        repository=FeedbackRepository(db),
        notifier=notifier,
        lookback_minutes=config.feedback_sweep_lookback_minutes,
    )
    return FeedbackSweepResponse(
        success=True,
        message=result.message,
        processed=result.processed,
        errors=result.errors,
    )
