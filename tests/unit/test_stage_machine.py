"""Tests for the StageMachine — transitions, strict ordering, recording."""

from __future__ import annotations

import pytest

from deployline.core.event_bus import EventBus
from deployline.core.run_ledger import RunLedger
from deployline.core.stage_machine import (
    InvalidTransitionError,
    StageMachine,
    StageOrderError,
)
from deployline.models.events import EventKind, TransitionEvent
from deployline.models.stages import (
    ActionDefinition,
    StageDefinition,
    StageStatus,
)


class TestStageMachine:
    def test_initialize(self, stage_machine: StageMachine, execution_id: str):
        states = stage_machine.initialize(execution_id)
        assert states == {"Source": StageStatus.PENDING, "Build": StageStatus.PENDING}

    def test_double_initialize_rejected(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        with pytest.raises(InvalidTransitionError):
            stage_machine.initialize(execution_id)

    def test_transition_to_running(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        event = stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        assert event.kind == EventKind.STAGE_TRANSITION
        assert event.details["from"] == "pending"
        assert stage_machine.get_status(execution_id, "Source") == StageStatus.RUNNING

    def test_invalid_transition_rejected(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        with pytest.raises(InvalidTransitionError):
            # Cannot go directly from PENDING to SUCCEEDED
            stage_machine.transition(execution_id, "Source", StageStatus.SUCCEEDED)

    @pytest.mark.parametrize("terminal", [StageStatus.SUCCEEDED, StageStatus.FAILED])
    def test_terminal_states_have_no_exit(
        self, stage_machine: StageMachine, execution_id: str, terminal: StageStatus
    ):
        stage_machine.initialize(execution_id)
        stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        stage_machine.transition(execution_id, "Source", terminal)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)

    def test_unknown_stage(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        with pytest.raises(InvalidTransitionError):
            stage_machine.transition(execution_id, "Test", StageStatus.RUNNING)


class TestStrictOrdering:
    def test_build_cannot_start_before_source(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        with pytest.raises(StageOrderError):
            stage_machine.transition(execution_id, "Build", StageStatus.RUNNING)

    def test_build_cannot_start_while_source_running(
        self, stage_machine: StageMachine, execution_id: str
    ):
        stage_machine.initialize(execution_id)
        stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        can, reasons = stage_machine.can_start(execution_id, "Build")
        assert can is False
        assert reasons == ["Source is running"]

    def test_build_blocked_after_source_failed(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        stage_machine.transition(execution_id, "Source", StageStatus.FAILED)
        with pytest.raises(StageOrderError):
            stage_machine.transition(execution_id, "Build", StageStatus.RUNNING)

    def test_build_starts_after_source_succeeded(
        self, stage_machine: StageMachine, execution_id: str
    ):
        stage_machine.initialize(execution_id)
        stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        stage_machine.transition(execution_id, "Source", StageStatus.SUCCEEDED)
        can, reasons = stage_machine.can_start(execution_id, "Build")
        assert (can, reasons) == (True, [])
        stage_machine.transition(execution_id, "Build", StageStatus.RUNNING)

    def test_stages_sorted_by_ordinal(self):
        machine = StageMachine(
            [
                StageDefinition(name="Deploy", ordinal=2, actions=[ActionDefinition(name="d")]),
                StageDefinition(name="Source", ordinal=0, actions=[ActionDefinition(name="s")]),
                StageDefinition(name="Build", ordinal=1, actions=[ActionDefinition(name="b")]),
            ]
        )
        assert machine.stage_names == ["Source", "Build", "Deploy"]

    def test_executions_are_independent(self, stage_machine: StageMachine):
        stage_machine.initialize("exec-a")
        stage_machine.initialize("exec-b")
        stage_machine.transition("exec-a", "Source", StageStatus.RUNNING)
        assert stage_machine.get_status("exec-b", "Source") == StageStatus.PENDING


class TestRecording:
    def test_transitions_recorded_and_published(
        self, ledger: RunLedger, bus: EventBus, stage_machine: StageMachine, execution_id: str
    ):
        seen: list[TransitionEvent] = []
        bus.subscribe(seen.append)
        stage_machine.initialize(execution_id)
        stage_machine.transition(execution_id, "Source", StageStatus.RUNNING)
        stage_machine.transition(execution_id, "Source", StageStatus.SUCCEEDED)

        recorded = ledger.get_transitions(execution_id)
        assert [e.status for e in recorded] == [StageStatus.RUNNING, StageStatus.SUCCEEDED]
        assert [e.status for e in seen] == [StageStatus.RUNNING, StageStatus.SUCCEEDED]
        assert recorded[0].timestamp_utc <= recorded[1].timestamp_utc

    def test_release_forgets_execution(self, stage_machine: StageMachine, execution_id: str):
        stage_machine.initialize(execution_id)
        stage_machine.release(execution_id)
        with pytest.raises(KeyError):
            stage_machine.get_all(execution_id)
