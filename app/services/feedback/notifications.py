"""Render and send the internal notification email for a feedback submission."""

from __future__ import annotations

import html
import logging
import time
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.clients.resend import OutboundEmail, ResendClient
from app.models.feedback import Feedback
from app.observability.metrics import metrics

logger = logging.getLogger(__name__)

MAX_RATING = 5
FOOTER_NOTE = "This email was automatically generated by the AI Bitcoin Tutor feedback system."


class FeedbackPayload(BaseModel):
    """Fields of a feedback row as posted by the database trigger or the sweep."""

    model_config = ConfigDict(extra="ignore")

    reference_number: str
    feedback_type: str
    priority_level: str
    title: str
    description: str
    rating: int | None = None
    poll_response: str | None = None
    contact_email: str | None = None
    contact_name: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Feedback) -> "FeedbackPayload":
        return cls.model_validate(row, from_attributes=True)


def humanize_feedback_type(value: str) -> str:
    """``feature-request`` -> ``Feature Request``."""
    return " ".join(word.capitalize() for word in value.replace("-", " ").split())


def _rating_stars(rating: int | None) -> str | None:
    if rating is None:
        return None
    bounded = max(0, min(rating, MAX_RATING))
    return f"{'★' * bounded}{'☆' * (MAX_RATING - bounded)} ({bounded}/{MAX_RATING} stars)"


def _submitted_at(feedback: FeedbackPayload) -> str:
    created = feedback.created_at or datetime.now(UTC)
    if created.tzinfo is None:
        created = created.replace(tzinfo=UTC)
    return created.astimezone(UTC).strftime("%b %d, %Y %H:%M UTC")


def render_subject(feedback: FeedbackPayload) -> str:
    return f"New Feedback Submission: {feedback.title} [{feedback.reference_number}]"


def render_text(feedback: FeedbackPayload) -> str:
    lines = [
        "New Feedback Submission - AI Bitcoin Tutor",
        "",
        f"Reference Number: {feedback.reference_number}",
        f"Feedback Type: {humanize_feedback_type(feedback.feedback_type)}",
        f"Priority Level: {feedback.priority_level.upper()}",
        f"Title: {feedback.title}",
        "",
        "Description:",
        feedback.description,
        "",
    ]
    if feedback.rating is not None:
        lines.append(f"Rating: {feedback.rating}/{MAX_RATING} stars")
        lines.append("")
    if feedback.poll_response:
        lines.append(f"Poll Response: {feedback.poll_response}")
        lines.append("")
    lines.append("Contact Information:")
    if feedback.contact_name:
        lines.append(f"Name: {feedback.contact_name}")
    if feedback.contact_email:
        lines.append(f"Email: {feedback.contact_email}")
    if not feedback.contact_name and not feedback.contact_email:
        lines.append("Anonymous submission")
    lines.extend(
        [
            "",
            f"Submitted: {_submitted_at(feedback)}",
            "",
            "---",
            FOOTER_NOTE,
            f"Use reference number {feedback.reference_number} for tracking.",
        ]
    )
    return "\n".join(lines) + "\n"


def _field(label: str, value_html: str, css_class: str = "value") -> str:
    return (
        '<div class="field">'
        f'<div class="label">{html.escape(label)}:</div>'
        f'<div class="{css_class}">{value_html}</div>'
        "</div>"
    )


def render_html(feedback: FeedbackPayload) -> str:
    """Return the HTML body; every user-supplied value is escaped."""
    esc = html.escape
    priority = esc(feedback.priority_level)
    parts: list[str] = [
        "<!DOCTYPE html>",
        "<html>",
        '<head><meta charset="utf-8"><title>New Feedback Submission</title></head>',
        "<body>",
        '<div class="container">',
        '<div class="header"><h1>New Feedback Submission</h1><p>AI Bitcoin Tutor Platform</p></div>',
        '<div class="content">',
        _field("Reference Number", f"<strong>{esc(feedback.reference_number)}</strong>"),
        _field("Feedback Type", esc(humanize_feedback_type(feedback.feedback_type))),
        _field(
            "Priority Level",
            f"<strong>{priority.upper()}</strong>",
            css_class=f"value priority-{priority}",
        ),
        _field("Title", f"<strong>{esc(feedback.title)}</strong>"),
        _field("Description", esc(feedback.description).replace("\n", "<br>")),
    ]
    stars = _rating_stars(feedback.rating)
    if stars:
        parts.append(_field("Rating", esc(stars), css_class="value rating"))
    if feedback.poll_response:
        parts.append(_field("Poll Response", esc(feedback.poll_response)))
    contact: list[str] = []
    if feedback.contact_name:
        contact.append(f"<strong>Name:</strong> {esc(feedback.contact_name)}<br>")
    if feedback.contact_email:
        email = esc(feedback.contact_email)
        contact.append(f'<strong>Email:</strong> <a href="mailto:{email}">{email}</a>')
    parts.append(
        _field("Contact Information", "".join(contact) or "<em>Anonymous submission</em>")
    )
    parts.append(_field("Submitted", esc(_submitted_at(feedback))))
    parts.extend(
        [
            "</div>",
            '<div class="footer">',
            "<p><strong>Next Steps:</strong></p>",
            "<ul>",
            "<li>Review the feedback and determine appropriate action</li>",
            "<li>If contact information is provided, consider reaching out to the user</li>",
            "<li>Update the feedback status in the admin dashboard</li>",
            f"<li>Use reference number <strong>{esc(feedback.reference_number)}</strong> for tracking</li>",
            "</ul>",
            f"<p><em>{FOOTER_NOTE}</em></p>",
            "</div>",
            "</div>",
            "</body>",
            "</html>",
        ]
    )
    return "\n".join(parts)


def build_email(
    feedback: FeedbackPayload, *, from_address: str, recipients: list[str]
) -> OutboundEmail:
    return OutboundEmail(
        from_address=from_address,
        to_addresses=recipients,
        subject=render_subject(feedback),
        html=render_html(feedback),
        text=render_text(feedback),
        headers={
            "X-Feedback-Reference": feedback.reference_number,
            "X-Priority-Level": feedback.priority_level,
            "X-Feedback-Type": feedback.feedback_type,
        },
    )


class FeedbackNotifier:
    """Sends feedback notifications through Resend."""

    def __init__(
        self, email_client: ResendClient, *, from_address: str, recipients: list[str]
    ) -> None:
        self._email_client = email_client
        self._from_address = from_address
        self._recipients = recipients

    async def send(self, feedback: FeedbackPayload) -> str | None:
        start = time.perf_counter()
        email_id = await self._email_client.send(
            build_email(feedback, from_address=self._from_address, recipients=self._recipients)
        )
        duration_ms = (time.perf_counter() - start) * 1000
        extra: dict[str, Any] = {
            "reference_number": feedback.reference_number,
            "email_id": email_id,
            "priority_level": feedback.priority_level,
        }
        logger.info("feedback.email.sent", extra=extra)
        metrics.increment("feedback.email.sent", tags={"priority": feedback.priority_level})
        metrics.timing("feedback.email.duration_ms", duration_ms)
        return email_id
