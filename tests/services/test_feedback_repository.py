from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from app.models.feedback import Feedback
from app.services.feedback.repository import FeedbackRepository
from app.services.feedback.sweep import SWEEP_BATCH_LIMIT

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def _feedback(reference: str, *, seconds_ago: int, sent: bool = False) -> Feedback:
    return Feedback(
        reference_number=reference,
        feedback_type="bug-report",
        priority_level="medium",
        title=f"Item {reference}",
        description="Details",
        created_at=NOW - timedelta(seconds=seconds_ago),
        email_sent_at=NOW if sent else None,
    )


@pytest.fixture
def seeded(sync_session_factory):
    # Inserted newest first.
    with sync_session_factory() as session:
        for index in range(12):
            session.add(_feedback(f"FB-{index:02d}", seconds_ago=10 + index * 10))
        session.add(_feedback("FB-SENT", seconds_ago=250, sent=True))
        session.add(_feedback("FB-STALE", seconds_ago=10 * 60))
        session.commit()
    return sync_session_factory


@pytest.mark.asyncio
async def test_list_pending_caps_batch_oldest_first(seeded, db_session):
    repository = FeedbackRepository(db_session)

    rows = await repository.list_pending(since=NOW - timedelta(minutes=5), limit=SWEEP_BATCH_LIMIT)

    references = [row.reference_number for row in rows]
    assert len(references) == SWEEP_BATCH_LIMIT
    assert references == [f"FB-{index:02d}" for index in range(11, 1, -1)]
    assert "FB-SENT" not in references
    assert "FB-STALE" not in references


@pytest.mark.asyncio
async def test_mark_sent_only_stamps_unsent_rows(seeded, db_session):
    repository = FeedbackRepository(db_session)

    assert await repository.mark_sent("FB-00", sent_at=NOW) == 1
    assert await repository.mark_sent("FB-00", sent_at=NOW) == 0
    assert await repository.mark_sent("FB-SENT", sent_at=NOW) == 0

    rows = await repository.list_pending(since=NOW - timedelta(minutes=5), limit=20)
    assert [row.reference_number for row in rows][-1] == "FB-01"
