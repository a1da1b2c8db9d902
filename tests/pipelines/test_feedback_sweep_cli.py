from __future__ import annotations

import pytest

from app.config import settings
from app.services.feedback.sweep import SweepResult
from pipelines import feedback_sweep


def test_main_exits_when_database_url_missing(
    monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
):
    monkeypatch.setattr(settings, "database_url", None, raising=False)
    monkeypatch.setattr(settings, "resend_api_key", "re_test", raising=False)
    monkeypatch.setattr("sys.argv", ["feedback-sweep"])
    caplog.set_level("ERROR", logger="pipelines.feedback_sweep")

    with pytest.raises(SystemExit) as excinfo:
        feedback_sweep.main()

    assert excinfo.value.code == 1
    assert any(record.message == "feedback.sweep.failed" for record in caplog.records)


def test_run_passes_lookback_to_sweep(monkeypatch: pytest.MonkeyPatch):
    captured: dict[str, int] = {}

    async def _fake_sweep(lookback_minutes: int) -> SweepResult:
        captured["lookback"] = lookback_minutes
        return SweepResult(found=2, processed=2, errors=0)

    monkeypatch.setattr(feedback_sweep, "_sweep", _fake_sweep)

    result = feedback_sweep.run(["--lookback-minutes", "15"])

    assert captured["lookback"] == 15
    assert result.message == "Processed 2 feedback entries"


def test_main_exits_nonzero_when_items_fail(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(
        feedback_sweep, "run", lambda argv=None: SweepResult(found=1, processed=0, errors=1)
    )
    with pytest.raises(SystemExit) as excinfo:
        feedback_sweep.main()
    assert excinfo.value.code == 1
