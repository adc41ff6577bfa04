"""Typed events: trigger input and stage/action transition output."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from deployline.models.stages import StageStatus


class TriggerEvent(BaseModel):
    """A new source revision delivered to the pipeline controller."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    repository: str = ""
    revision: str
    received_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


class EventKind(str, Enum):
    EXECUTION_STARTED = "execution_started"
    STAGE_TRANSITION = "stage_transition"
    ACTION_TRANSITION = "action_transition"
    EXECUTION_FINISHED = "execution_finished"


class TransitionEvent(BaseModel):
    """Observability record: who moved to which status, and when."""

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    execution_id: str
    stage: str = ""
    action: str = ""
    status: StageStatus
    timestamp_utc: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    details: dict[str, Any] = {}
