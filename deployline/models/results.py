"""Result models for commands, phases, deploys and whole pipeline executions."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from deployline.models.artifacts import Artifact
from deployline.models.buildspec import PhaseName
from deployline.models.events import TriggerEvent
from deployline.models.stages import StageRecord, StageStatus


class ErrorKind(str, Enum):
    """Operator-facing error taxonomy."""

    SOURCE_UNAVAILABLE = "SourceUnavailable"
    PHASE_COMMAND_FAILED = "PhaseCommandFailed"
    DEPLOY_CALL_FAILED = "DeployCallFailed"
    CACHE_UNAVAILABLE = "CacheUnavailable"
    INTERNAL = "InternalError"


class ErrorInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: ErrorKind
    message: str
    stage: str = ""
    phase: str = ""
    command: str = ""
    exit_code: int | None = None
    reason: str = ""


class CommandResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    command: str
    exit_code: int
    output: str = ""  # combined stdout/stderr tail
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class PhaseResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    phase: PhaseName
    status: StageStatus
    commands: list[CommandResult] = []
    cache_hit: bool = False


class DeployAck(BaseModel):
    """Acknowledgement from the function backend."""

    model_config = ConfigDict(frozen=True)

    function_identity: str
    artifact_location: str
    code_sha256: str
    revision_id: str = ""


class DeployResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    function_identity: str
    artifact_location: str
    succeeded: bool
    ack: DeployAck | None = None
    reason: str = ""
    attempted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class BuildOutput(BaseModel):
    """What one Build Executor run hands back to the controller."""

    model_config = ConfigDict(frozen=True)

    artifact: Artifact
    deploy: DeployResult | None = None
    phases: list[PhaseResult] = []
    cache_warnings: list[str] = []


class PipelineResult(BaseModel):
    """Terminal record of one pipeline execution."""

    model_config = ConfigDict(frozen=True)

    execution_id: str
    trigger: TriggerEvent
    status: StageStatus
    stages: list[StageRecord] = []
    source_artifact: Artifact | None = None
    build_artifact: Artifact | None = None
    deploy: DeployResult | None = None
    phases: list[PhaseResult] = []
    error: ErrorInfo | None = None
    cache_warnings: list[str] = []
    started_at: datetime
    finished_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.status == StageStatus.SUCCEEDED

    def stage(self, name: str) -> StageRecord | None:
        for record in self.stages:
            if record.name == name:
                return record
        return None
