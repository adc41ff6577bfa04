"""Deterministic stage state machine.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Strict ordering: a stage enters RUNNING only when every earlier stage
  has SUCCEEDED
- Every transition recorded in the Run Ledger and published on the bus
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from deployline.models.events import EventKind, TransitionEvent
from deployline.models.stages import (
    DEFAULT_STAGE_DEFINITIONS,
    VALID_TRANSITIONS,
    StageDefinition,
    StageStatus,
)

if TYPE_CHECKING:
    from deployline.core.event_bus import EventBus
    from deployline.core.run_ledger import RunLedger


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageOrderError(RuntimeError):
    """Raised when a stage would start before its predecessors succeeded."""


class StageMachine:
    """Tracks stage status per execution and gates progression.

    Parameters
    ----------
    stages:
        Stage definitions; ordered by ``ordinal``.
    ledger:
        Optional Run Ledger to record transitions into.
    bus:
        Optional event bus to publish ``TransitionEvent``s on.
    """

    def __init__(
        self,
        stages: list[StageDefinition] | None = None,
        *,
        ledger: RunLedger | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._stages = sorted(stages or DEFAULT_STAGE_DEFINITIONS, key=lambda s: s.ordinal)
        self._ledger = ledger
        self._bus = bus
        self._lock = threading.Lock()
        # execution_id -> {stage name -> StageStatus}
        self._states: dict[str, dict[str, StageStatus]] = {}

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self._stages]

    @property
    def stages(self) -> list[StageDefinition]:
        return list(self._stages)

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize(self, execution_id: str) -> dict[str, StageStatus]:
        """Set every stage to PENDING for a new execution."""
        with self._lock:
            if execution_id in self._states:
                raise InvalidTransitionError(f"Execution {execution_id} already initialized")
            states = {name: StageStatus.PENDING for name in self.stage_names}
            self._states[execution_id] = states
            return dict(states)

    def get_status(self, execution_id: str, stage: str) -> StageStatus:
        with self._lock:
            return self._states[execution_id][stage]

    def get_all(self, execution_id: str) -> dict[str, StageStatus]:
        with self._lock:
            return dict(self._states[execution_id])

    def release(self, execution_id: str) -> None:
        """Forget a finished execution's in-memory state."""
        with self._lock:
            self._states.pop(execution_id, None)

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def can_start(self, execution_id: str, stage: str) -> tuple[bool, list[str]]:
        """Check if *stage* may transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        with self._lock:
            return self._check_start(execution_id, stage)

    def _check_start(self, execution_id: str, stage: str) -> tuple[bool, list[str]]:
        states = self._states[execution_id]
        current = states[stage]
        if current != StageStatus.PENDING:
            return False, [f"{stage} is {current.value}, not pending"]
        reasons = []
        for earlier in self.stage_names[: self.stage_names.index(stage)]:
            if states[earlier] != StageStatus.SUCCEEDED:
                reasons.append(f"{earlier} is {states[earlier].value}")
        return not reasons, reasons

    def transition(
        self,
        execution_id: str,
        stage: str,
        target: StageStatus,
        *,
        details: dict[str, Any] | None = None,
    ) -> TransitionEvent:
        """Move *stage* to *target*, recording and publishing the change."""
        with self._lock:
            if execution_id not in self._states:
                raise InvalidTransitionError(f"Unknown execution {execution_id}")
            states = self._states[execution_id]
            if stage not in states:
                raise InvalidTransitionError(f"Unknown stage {stage!r}")
            current = states[stage]

            allowed = VALID_TRANSITIONS.get(current, set())
            if target not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {stage} from {current.value} to {target.value}. "
                    f"Allowed: {[s.value for s in allowed]}"
                )

            if target == StageStatus.RUNNING:
                ok, reasons = self._check_start(execution_id, stage)
                if not ok:
                    raise StageOrderError(
                        f"Cannot start {stage}: {'; '.join(reasons)}"
                    )

            states[stage] = target

        event = TransitionEvent(
            kind=EventKind.STAGE_TRANSITION,
            execution_id=execution_id,
            stage=stage,
            status=target,
            details={"from": current.value, **(details or {})},
        )
        self.emit(event)
        return event

    def emit(self, event: TransitionEvent) -> None:
        """Persist and publish an event (stage, action or execution level)."""
        if self._ledger is not None:
            self._ledger.record_transition(event)
        if self._bus is not None:
            self._bus.publish(event)
