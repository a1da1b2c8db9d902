"""Run the feedback notification sweep once, for schedulers that invoke a command."""

from __future__ import annotations

import argparse
import asyncio
import logging
from collections.abc import Sequence

from app.clients.resend import ResendClient
from app.config import settings
from app.core import database
from app.core.errors import ServiceError
from app.services.feedback.notifications import FeedbackNotifier
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.sweep import SweepResult, sweep_pending_feedback

logger = logging.getLogger("pipelines.feedback_sweep")


class SweepConfigError(RuntimeError):
    """Raised when the sweep cannot start because a setting is missing."""

    def __init__(self, message: str, code: str = "E_SWEEP_CONFIG") -> None:
        super().__init__(message)
        self.code = code


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Email recently submitted feedback not yet notified.")
    parser.add_argument(
        "--lookback-minutes",
        type=int,
        default=settings.feedback_sweep_lookback_minutes,
        help=(
            "Only consider feedback created within this many minutes "
            f"(default: {settings.feedback_sweep_lookback_minutes})."
        ),
    )
    return parser.parse_args(argv)


async def _sweep(lookback_minutes: int) -> SweepResult:
    if not settings.database_url:
        raise SweepConfigError("DATABASE_URL is required to run the sweep.", code="E_DATABASE_URL_MISSING")
    if not settings.resend_api_key:
        raise SweepConfigError("RESEND_API_KEY is required to run the sweep.", code="E_RESEND_KEY_MISSING")

    await database.init_database()
    try:
        async with ResendClient(
            settings.resend_api_key,
            base_url=settings.resend_base_url,
            timeout=settings.http_timeout_seconds,
        ) as email_client, database.async_session() as session:
            notifier = FeedbackNotifier(
                email_client,
                from_address=settings.feedback_email_from,
                recipients=settings.feedback_recipients,
            )
            return await sweep_pending_feedback(
                repository=FeedbackRepository(session),
                notifier=notifier,
                lookback_minutes=lookback_minutes,
            )
    finally:
        await database.dispose_database()


def run(argv: Sequence[str] | None = None) -> SweepResult:
    args = parse_args(argv)
    result = asyncio.run(_sweep(max(0, args.lookback_minutes)))
    logger.info(
        "feedback.sweep.cli_completed",
        extra={"summary": result.message, "processed": result.processed, "errors": result.errors},
    )
    return result


def main() -> None:
    """Entry point for `python -m pipelines.feedback_sweep`."""
    logging.basicConfig(level=getattr(logging, settings.log_level.upper(), logging.INFO))
    try:
        result = run()
    except (SweepConfigError, ServiceError) as exc:
        logger.error("feedback.sweep.failed", extra={"code": exc.code, "error": str(exc)})
        raise SystemExit(1) from exc
    if result.errors:
        raise SystemExit(1)


if __name__ == "__main__":
    main()
