"""Periodic sweep that emails recently submitted feedback not yet notified."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app.core.errors import ServiceError
from app.observability.metrics import metrics
from app.services.feedback.notifications import FeedbackNotifier, FeedbackPayload
from app.services.feedback.repository import FeedbackRepository

logger = logging.getLogger(__name__)

SWEEP_BATCH_LIMIT = 10


@dataclass(frozen=True)
class SweepResult:
    found: int
    processed: int
    errors: int

    @property
    def message(self) -> str:
        if not self.found:
            return "No pending feedback to process"
        return f"Processed {self.found} feedback entries"


def _log_item_failure(reference: str | None, exc: Exception) -> None:
    logger.error(
        "feedback.sweep.item_failed",
        extra={
            "reference_number": reference,
            "code": getattr(exc, "code", None) or type(exc).__name__,
            "error": str(exc),
        },
    )


async def sweep_pending_feedback(
    *,
    repository: FeedbackRepository,
    notifier: FeedbackNotifier,
    lookback_minutes: int,
    now: datetime | None = None,
) -> SweepResult:
    """Send up to ``SWEEP_BATCH_LIMIT`` pending notifications, oldest first.

    A row is stamped ``email_sent_at`` only after a successful send, so a failed
    row is retried by the next sweep while it is still inside the lookback window.
    Any row that fails is counted in ``errors`` and the batch moves on.
    """
    current = now or datetime.now(UTC)
    since = current - timedelta(minutes=lookback_minutes)
    pending = await repository.list_pending(since=since, limit=SWEEP_BATCH_LIMIT)
    if not pending:
        logger.info("feedback.sweep.empty", extra={"since": since.isoformat()})
        return SweepResult(found=0, processed=0, errors=0)

    errors = 0
    # Rows are rendered before the first write; a rollback expires them.
    payloads: list[FeedbackPayload] = []
    for row in pending:
        try:
            payloads.append(FeedbackPayload.from_row(row))
        except ValidationError as exc:
            errors += 1
            _log_item_failure(getattr(row, "reference_number", None), exc)

    processed = 0
    for payload in payloads:
        try:
            await notifier.send(payload)
            await repository.mark_sent(payload.reference_number, sent_at=current)
        except SQLAlchemyError as exc:
            errors += 1
            await repository.rollback()
            _log_item_failure(payload.reference_number, exc)
            continue
        except ServiceError as exc:
            errors += 1
            _log_item_failure(payload.reference_number, exc)
            continue
        processed += 1

    result = SweepResult(found=len(pending), processed=processed, errors=errors)
    logger.info(
        "feedback.sweep.completed",
        extra={"found": result.found, "processed": processed, "errors": errors},
    )
    metrics.increment("feedback.sweep.processed", processed)
    if errors:
        metrics.alert(
            "feedback.sweep.errors",
            value=float(errors),
            threshold=0.0,
            severity="warning",
        )
    return result
