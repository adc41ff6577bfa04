"""Deployline data models — all Pydantic v2, all frozen (immutable)."""

from deployline.models.artifacts import Artifact
from deployline.models.buildspec import (
    PHASE_ORDER,
    BuildEnvironmentSpec,
    BuildPhase,
    BuildSpec,
    CacheSpec,
    DeployCommand,
    PhaseName,
    ShellCommand,
)
from deployline.models.credentials import UPDATE_FUNCTION_CODE, DeployCredential
from deployline.models.events import EventKind, TransitionEvent, TriggerEvent
from deployline.models.results import (
    BuildOutput,
    CommandResult,
    DeployAck,
    DeployResult,
    ErrorInfo,
    ErrorKind,
    PhaseResult,
    PipelineResult,
)
from deployline.models.stages import (
    BUILD_STAGE,
    DEFAULT_STAGE_DEFINITIONS,
    SOURCE_STAGE,
    VALID_TRANSITIONS,
    ActionDefinition,
    ActionRecord,
    StageDefinition,
    StageRecord,
    StageStatus,
)

__all__ = [
    # artifacts
    "Artifact",
    # buildspec
    "PhaseName",
    "PHASE_ORDER",
    "ShellCommand",
    "DeployCommand",
    "BuildPhase",
    "BuildEnvironmentSpec",
    "CacheSpec",
    "BuildSpec",
    # credentials
    "UPDATE_FUNCTION_CODE",
    "DeployCredential",
    # events
    "TriggerEvent",
    "EventKind",
    "TransitionEvent",
    # results
    "ErrorKind",
    "ErrorInfo",
    "CommandResult",
    "PhaseResult",
    "DeployAck",
    "DeployResult",
    "BuildOutput",
    "PipelineResult",
    # stages
    "StageStatus",
    "VALID_TRANSITIONS",
    "ActionDefinition",
    "StageDefinition",
    "ActionRecord",
    "StageRecord",
    "SOURCE_STAGE",
    "BUILD_STAGE",
    "DEFAULT_STAGE_DEFINITIONS",
]
