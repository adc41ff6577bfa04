"""Tests for the RunLedger — SQLite persistence of transitions and results."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from deployline.core.run_ledger import RunLedger
from deployline.models.events import EventKind, TransitionEvent, TriggerEvent
from deployline.models.results import ErrorInfo, ErrorKind, PipelineResult
from deployline.models.stages import StageRecord, StageStatus


def _start(ledger: RunLedger, execution_id: str, revision: str = "abc123", offset: int = 0) -> None:
    ledger.record_execution_start(
        execution_id,
        event_id=f"evt-{execution_id}",
        repository="hello",
        revision=revision,
        started_at=datetime(2026, 1, 1, tzinfo=timezone.utc) + timedelta(minutes=offset),
    )


class TestExecutions:
    def test_start_records_running(self, ledger: RunLedger):
        _start(ledger, "dl-1")
        summary = ledger.get_execution("dl-1")
        assert summary is not None
        assert summary.status == StageStatus.RUNNING
        assert summary.revision == "abc123"
        assert summary.finished_at is None
        assert ledger.get_result("dl-1") is None

    def test_finish_seals_result(self, ledger: RunLedger):
        _start(ledger, "dl-1")
        now = datetime.now(timezone.utc)
        result = PipelineResult(
            execution_id="dl-1",
            trigger=TriggerEvent(revision="abc123"),
            status=StageStatus.FAILED,
            stages=[
                StageRecord(name="Source", status=StageStatus.SUCCEEDED),
                StageRecord(name="Build", status=StageStatus.FAILED),
            ],
            error=ErrorInfo(
                kind=ErrorKind.PHASE_COMMAND_FAILED,
                message="exit 1",
                stage="Build",
                phase="build",
                exit_code=1,
            ),
            started_at=now,
            finished_at=now,
        )
        ledger.record_execution_finish(result)

        summary = ledger.get_execution("dl-1")
        assert summary.status == StageStatus.FAILED
        assert summary.error_kind == "PhaseCommandFailed"
        assert summary.finished_at is not None

        restored = ledger.get_result("dl-1")
        assert restored == result

    def test_unknown_execution(self, ledger: RunLedger):
        assert ledger.get_execution("nope") is None
        assert ledger.get_transitions("nope") == []

    def test_list_most_recent_first(self, ledger: RunLedger):
        _start(ledger, "dl-old", offset=0)
        _start(ledger, "dl-new", offset=5)
        assert [e.execution_id for e in ledger.list_executions()] == ["dl-new", "dl-old"]
        assert len(ledger.list_executions(limit=1)) == 1


class TestTransitions:
    def test_transitions_in_recording_order(self, ledger: RunLedger):
        for stage, status in [
            ("Source", StageStatus.RUNNING),
            ("Source", StageStatus.SUCCEEDED),
            ("Build", StageStatus.RUNNING),
        ]:
            ledger.record_transition(
                TransitionEvent(
                    kind=EventKind.STAGE_TRANSITION,
                    execution_id="dl-1",
                    stage=stage,
                    status=status,
                    details={"from": "pending"},
                )
            )
        events = ledger.get_transitions("dl-1")
        assert [(e.stage, e.status) for e in events] == [
            ("Source", StageStatus.RUNNING),
            ("Source", StageStatus.SUCCEEDED),
            ("Build", StageStatus.RUNNING),
        ]
        assert events[0].details == {"from": "pending"}

    def test_ledger_survives_reopen(self, tmp_dir):
        path = tmp_dir / "ledger.db"
        first = RunLedger(path)
        _start(first, "dl-1")
        assert RunLedger(path).get_execution("dl-1") is not None


class TestEvents:
    def test_has_event(self, ledger: RunLedger):
        assert ledger.has_event("evt-dl-1") is False
        _start(ledger, "dl-1")
        assert ledger.has_event("evt-dl-1") is True

    def test_event_known_after_reopen(self, tmp_dir):
        path = tmp_dir / "events.db"
        _start(RunLedger(path), "dl-1")
        assert RunLedger(path).has_event("evt-dl-1") is True
