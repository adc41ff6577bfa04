"""Pipeline controller — the Source -> Build orchestrator.

The controller wires the StageMachine, RunLedger, EventBus, SourceTrigger
and BuildExecutor into one execution per trigger event:

1. Claim the trigger (an event runs at most once)
2. Initialize every stage to PENDING
3. For each stage in order: RUNNING -> run its actions -> SUCCEEDED/FAILED
4. Stop at the first failed stage; later stages stay PENDING
5. Seal the PipelineResult in the ledger

Nothing is retried. Recovery is a new trigger.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone

from deployline.build.executor import BuildExecutor
from deployline.core.build_cache import CacheBackend
from deployline.core.errors import DeployCallFailedError, PhaseCommandFailedError, PipelineError
from deployline.core.event_bus import EventBus
from deployline.core.run_ledger import RunLedger
from deployline.core.stage_machine import StageMachine
from deployline.models.artifacts import Artifact
from deployline.models.events import EventKind, TransitionEvent, TriggerEvent
from deployline.models.results import (
    DeployResult,
    ErrorInfo,
    ErrorKind,
    PhaseResult,
    PipelineResult,
)
from deployline.models.stages import (
    ActionDefinition,
    ActionRecord,
    StageDefinition,
    StageRecord,
    StageStatus,
)
from deployline.source.trigger import SourceTrigger

logger = logging.getLogger(__name__)


class DuplicateTriggerError(RuntimeError):
    """Raised when a trigger event has already been executed or is in flight."""


@dataclass
class _ExecutionContext:
    """Mutable scratch state for one execution; never shared."""

    execution_id: str
    trigger: TriggerEvent
    source_artifact: Artifact | None = None
    build_artifact: Artifact | None = None
    deploy: DeployResult | None = None
    phases: list[PhaseResult] = field(default_factory=list)
    cache_warnings: list[str] = field(default_factory=list)
    error: ErrorInfo | None = None
    records: list[StageRecord] = field(default_factory=list)


ActionHandler = Callable[[_ExecutionContext], list[str]]


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PipelineController:
    """Runs pipeline executions, strictly stage by stage.

    Parameters
    ----------
    trigger:
        Snapshots revisions for the Source stage.
    executor:
        Runs the buildspec (and the deploy) for the Build stage.
    cache:
        Build cache shared by every execution of this controller.
    ledger:
        Persists transitions and final status. Optional.
    bus:
        Receives transition events for observers. Optional.
    stages:
        Stage plan; defaults to Source(Checkout) -> Build(Compile).
    """

    def __init__(
        self,
        trigger: SourceTrigger,
        executor: BuildExecutor,
        *,
        cache: CacheBackend | None = None,
        ledger: RunLedger | None = None,
        bus: EventBus | None = None,
        stages: list[StageDefinition] | None = None,
    ) -> None:
        self.trigger = trigger
        self.executor = executor
        self.cache = cache
        self.ledger = ledger
        self.bus = bus or EventBus()
        self.stage_machine = StageMachine(stages, ledger=ledger, bus=self.bus)

        self._handlers: dict[str, ActionHandler] = {
            "Checkout": self._checkout,
            "Compile": self._compile,
        }
        for stage in self.stage_machine.stages:
            for action in stage.actions:
                if action.name not in self._handlers:
                    raise ValueError(
                        f"No handler for action {action.name!r} in stage {stage.name!r}"
                    )

        self._lock = threading.Lock()
        # With a ledger this only holds in-flight ids; the ledger keeps the rest.
        self._claimed: set[str] = set()

    # ------------------------------------------------------------------
    # Run lifecycle
    # ------------------------------------------------------------------

    def run(self, event: TriggerEvent) -> PipelineResult:
        """Execute the pipeline once for *event* and return its final result."""
        self._claim(event)

        ts = _now().strftime("%Y%m%d-%H%M%S")
        execution_id = f"dl-{ts}-{uuid.uuid4().hex[:6]}"
        ctx = _ExecutionContext(execution_id=execution_id, trigger=event)
        started_at = _now()

        if self.ledger is not None:
            self.ledger.record_execution_start(
                execution_id,
                event_id=event.event_id,
                repository=event.repository,
                revision=event.revision,
                started_at=started_at,
            )
            with self._lock:
                self._claimed.discard(event.event_id)
        self.stage_machine.initialize(execution_id)
        self._emit(ctx, EventKind.EXECUTION_STARTED, StageStatus.RUNNING, revision=event.revision)
        logger.info("Execution %s started for revision %s", execution_id, event.revision)

        status = StageStatus.SUCCEEDED
        try:
            for stage in self.stage_machine.stages:
                if not self._run_stage(ctx, stage):
                    status = StageStatus.FAILED
                    break
            # Stages never reached are reported as still pending.
            reached = {r.name for r in ctx.records}
            for stage in self.stage_machine.stages:
                if stage.name not in reached:
                    ctx.records.append(StageRecord(name=stage.name, status=StageStatus.PENDING))
        finally:
            self.stage_machine.release(execution_id)

        result = PipelineResult(
            execution_id=execution_id,
            trigger=event,
            status=status,
            stages=ctx.records,
            source_artifact=ctx.source_artifact,
            build_artifact=ctx.build_artifact,
            deploy=ctx.deploy,
            phases=ctx.phases,
            error=ctx.error,
            cache_warnings=ctx.cache_warnings,
            started_at=started_at,
            finished_at=_now(),
        )
        if self.ledger is not None:
            self.ledger.record_execution_finish(result)
        self._emit(
            ctx,
            EventKind.EXECUTION_FINISHED,
            status,
            error_kind=ctx.error.kind.value if ctx.error else "",
        )
        if status == StageStatus.SUCCEEDED:
            logger.info("Execution %s succeeded", execution_id)
        else:
            logger.error(
                "Execution %s failed: %s",
                execution_id,
                ctx.error.message if ctx.error else "unknown error",
            )
        return result

    def _claim(self, event: TriggerEvent) -> None:
        with self._lock:
            seen = event.event_id in self._claimed or (
                self.ledger is not None and self.ledger.has_event(event.event_id)
            )
            if seen:
                raise DuplicateTriggerError(
                    f"Trigger {event.event_id} has already been executed"
                )
            self._claimed.add(event.event_id)

    # ------------------------------------------------------------------
    # Stage and action execution
    # ------------------------------------------------------------------

    def _run_stage(self, ctx: _ExecutionContext, stage: StageDefinition) -> bool:
        """Run one stage's actions in order. Returns True on success."""
        self.stage_machine.transition(ctx.execution_id, stage.name, StageStatus.RUNNING)
        stage_started = _now()
        actions: list[ActionRecord] = []
        ok = True

        for action in stage.actions:
            record = self._run_action(ctx, stage, action)
            actions.append(record)
            if record.status != StageStatus.SUCCEEDED:
                ok = False
                break

        final = StageStatus.SUCCEEDED if ok else StageStatus.FAILED
        details = {"error_kind": ctx.error.kind.value} if ctx.error and not ok else {}
        self.stage_machine.transition(ctx.execution_id, stage.name, final, details=details)
        ctx.records.append(
            StageRecord(
                name=stage.name,
                status=final,
                actions=actions,
                started_at=stage_started,
                finished_at=_now(),
            )
        )
        return ok

    def _run_action(
        self, ctx: _ExecutionContext, stage: StageDefinition, action: ActionDefinition
    ) -> ActionRecord:
        handler = self._handlers[action.name]
        inputs = self._resolve_inputs(ctx, action)
        started = _now()
        self._emit(ctx, EventKind.ACTION_TRANSITION, StageStatus.RUNNING, stage=stage.name, action=action.name)

        try:
            outputs = handler(ctx)
            status = StageStatus.SUCCEEDED
        except PipelineError as exc:
            self._absorb_failure(ctx, exc)
            ctx.error = exc.to_info(stage=stage.name)
            outputs = [ctx.build_artifact.location] if ctx.build_artifact else []
            status = StageStatus.FAILED
        except Exception as exc:
            logger.exception("Action %s/%s raised unexpectedly", stage.name, action.name)
            ctx.error = ErrorInfo(kind=ErrorKind.INTERNAL, message=str(exc), stage=stage.name)
            outputs = []
            status = StageStatus.FAILED

        self._emit(
            ctx,
            EventKind.ACTION_TRANSITION,
            status,
            stage=stage.name,
            action=action.name,
            outputs=outputs,
        )
        return ActionRecord(
            name=action.name,
            status=status,
            inputs=inputs,
            outputs=outputs,
            started_at=started,
            finished_at=_now(),
        )

    @staticmethod
    def _resolve_inputs(ctx: _ExecutionContext, action: ActionDefinition) -> list[str]:
        if action.inputs and ctx.source_artifact is not None:
            return [ctx.source_artifact.location]
        return []

    @staticmethod
    def _absorb_failure(ctx: _ExecutionContext, exc: PipelineError) -> None:
        """Keep whatever a failing build already produced in the result."""
        if isinstance(exc, PhaseCommandFailedError):
            ctx.phases = list(exc.phases)
        elif isinstance(exc, DeployCallFailedError):
            ctx.phases = list(exc.phases)
            if exc.artifact is not None:
                ctx.build_artifact = exc.artifact
                ctx.deploy = DeployResult(
                    function_identity=exc.function_identity or "",
                    artifact_location=exc.artifact.location,
                    succeeded=False,
                    reason=exc.reason,
                )

    # ------------------------------------------------------------------
    # Default action handlers
    # ------------------------------------------------------------------

    def _checkout(self, ctx: _ExecutionContext) -> list[str]:
        ctx.source_artifact = self.trigger.on_commit(ctx.trigger.revision)
        return [ctx.source_artifact.location]

    def _compile(self, ctx: _ExecutionContext) -> list[str]:
        if ctx.source_artifact is None:
            raise PipelineError("Build started without a source artifact")
        output = self.executor.execute(ctx.source_artifact, self.cache)
        ctx.build_artifact = output.artifact
        ctx.deploy = output.deploy
        ctx.phases = list(output.phases)
        ctx.cache_warnings = list(output.cache_warnings)
        return [output.artifact.location]

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------

    def _emit(
        self,
        ctx: _ExecutionContext,
        kind: EventKind,
        status: StageStatus,
        *,
        stage: str = "",
        action: str = "",
        **details: object,
    ) -> None:
        self.stage_machine.emit(
            TransitionEvent(
                kind=kind,
                execution_id=ctx.execution_id,
                stage=stage,
                action=action,
                status=status,
                details=dict(details),
            )
        )
