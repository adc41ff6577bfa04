"""Stage and action models for the Source -> Build pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageStatus(str, Enum):
    """Lifecycle status shared by stages and actions."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Enforced by StageMachine. SUCCEEDED and FAILED are terminal: recovery is a
# new trigger, never an in-place retry.
VALID_TRANSITIONS: dict[StageStatus, set[StageStatus]] = {
    StageStatus.PENDING: {StageStatus.RUNNING},
    StageStatus.RUNNING: {StageStatus.SUCCEEDED, StageStatus.FAILED},
    StageStatus.SUCCEEDED: set(),
    StageStatus.FAILED: set(),
}


class ActionDefinition(BaseModel):
    """An atomic unit of work inside a stage."""

    model_config = ConfigDict(frozen=True)

    name: str
    inputs: list[str] = []  # artifact names consumed
    outputs: list[str] = []  # artifact names produced


class StageDefinition(BaseModel):
    """A named, ordered pipeline stage.

    Stages run strictly in ``ordinal`` order; a stage may only enter
    RUNNING once every stage with a lower ordinal has SUCCEEDED.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    ordinal: int
    actions: list[ActionDefinition]


class ActionRecord(BaseModel):
    """Outcome of one action within an execution."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: StageStatus
    inputs: list[str] = []  # content addresses
    outputs: list[str] = []  # content addresses
    started_at: datetime | None = None
    finished_at: datetime | None = None


class StageRecord(BaseModel):
    """Outcome of one stage within an execution."""

    model_config = ConfigDict(frozen=True)

    name: str
    status: StageStatus
    actions: list[ActionRecord] = []
    started_at: datetime | None = None
    finished_at: datetime | None = None


SOURCE_STAGE = "Source"
BUILD_STAGE = "Build"

SOURCE_OUTPUT = "SourceOutput"
BUILD_OUTPUT = "BuildOutput"

DEFAULT_STAGE_DEFINITIONS: list[StageDefinition] = [
    StageDefinition(
        name=SOURCE_STAGE,
        ordinal=0,
        actions=[ActionDefinition(name="Checkout", outputs=[SOURCE_OUTPUT])],
    ),
    StageDefinition(
        name=BUILD_STAGE,
        ordinal=1,
        actions=[
            ActionDefinition(
                name="Compile", inputs=[SOURCE_OUTPUT], outputs=[BUILD_OUTPUT]
            )
        ],
    ),
]
