from __future__ import annotations

from datetime import UTC, datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError

from app.core.errors import EmailDeliveryError
from app.services.feedback import sweep as sweep_module
from app.services.feedback.sweep import SWEEP_BATCH_LIMIT, sweep_pending_feedback
from tests.helpers.metrics_stub import StubMetrics

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _row(reference: str) -> SimpleNamespace:
    return SimpleNamespace(
        reference_number=reference,
        feedback_type="general",
        priority_level="low",
        title=f"Title {reference}",
        description="Body",
        rating=None,
        poll_response=None,
        contact_email=None,
        contact_name=None,
        created_at=NOW - timedelta(minutes=1),
    )


class StubRepository:
    def __init__(self, rows):
        self.rows = rows
        self.list_calls: list[dict] = []
        self.marked: list[str] = []
        self.failing_marks: set[str] = set()
        self.rollbacks = 0

    async def list_pending(self, *, since, limit):
        self.list_calls.append({"since": since, "limit": limit})
        return self.rows

    async def mark_sent(self, reference_number, *, sent_at=None):
        if reference_number in self.failing_marks:
            raise OperationalError("UPDATE feedback", {}, Exception("database is locked"))
        self.marked.append(reference_number)
        return 1

    async def rollback(self):
        self.rollbacks += 1


class StubNotifier:
    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()
        self.sent: list[str] = []

    async def send(self, payload):
        if payload.reference_number in self.failing:
            raise EmailDeliveryError("Resend request failed: 500")
        self.sent.append(payload.reference_number)
        return "email_1"


@pytest.mark.asyncio
async def test_empty_window_makes_no_email_calls():
    repository = StubRepository([])
    notifier = StubNotifier()

    result = await sweep_pending_feedback(
        repository=repository, notifier=notifier, lookback_minutes=5, now=NOW
    )

    assert (result.found, result.processed, result.errors) == (0, 0, 0)
    assert result.message == "No pending feedback to process"
    assert notifier.sent == []
    assert repository.list_calls == [{"since": NOW - timedelta(minutes=5), "limit": SWEEP_BATCH_LIMIT}]


@pytest.mark.asyncio
async def test_item_failures_are_counted_and_not_marked(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(sweep_module, "metrics", stub)
    repository = StubRepository([_row("A"), _row("B"), _row("C")])
    notifier = StubNotifier(failing={"B"})

    result = await sweep_pending_feedback(
        repository=repository, notifier=notifier, lookback_minutes=5, now=NOW
    )

    assert (result.found, result.processed, result.errors) == (3, 2, 1)
    assert notifier.sent == ["A", "C"]
    assert repository.marked == ["A", "C"]
    assert stub.alert_calls[0]["metric"] == "feedback.sweep.errors"
    assert stub.alert_calls[0]["value"] == 1.0


@pytest.mark.asyncio
async def test_database_failure_on_one_row_does_not_stop_the_batch(monkeypatch):
    stub = StubMetrics()
    monkeypatch.setattr(sweep_module, "metrics", stub)
    repository = StubRepository([_row("FB-1"), _row("FB-2")])
    repository.failing_marks = {"FB-1"}
    notifier = StubNotifier()

    result = await sweep_pending_feedback(
        repository=repository, notifier=notifier, lookback_minutes=5, now=NOW
    )

    assert (result.found, result.processed, result.errors) == (2, 1, 1)
    assert notifier.sent == ["FB-1", "FB-2"]
    assert repository.marked == ["FB-2"]
    assert repository.rollbacks == 1
    assert stub.increment_calls[0]["value"] == 1


@pytest.mark.asyncio
async def test_unrenderable_row_is_counted_and_skipped(monkeypatch):
    monkeypatch.setattr(sweep_module, "metrics", StubMetrics())
    broken = _row("FB-BAD")
    broken.title = None
    repository = StubRepository([broken, _row("FB-OK")])
    notifier = StubNotifier()

    result = await sweep_pending_feedback(
        repository=repository, notifier=notifier, lookback_minutes=5, now=NOW
    )

    assert (result.found, result.processed, result.errors) == (2, 1, 1)
    assert notifier.sent == ["FB-OK"]
    assert repository.marked == ["FB-OK"]
    assert repository.rollbacks == 0
