"""Content-addressed artifact models (write-once)."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class Artifact(BaseModel):
    """Metadata for a stage output. The bytes live in the artifact store.

    An artifact is never mutated after it is produced. A later trigger
    supersedes it with a new artifact; ``location`` doubles as the
    integrity check because it is the SHA-256 of the stored bytes.
    """

    model_config = ConfigDict(frozen=True)

    artifact_id: str = Field(default_factory=lambda: f"art-{uuid.uuid4().hex[:12]}")
    name: str
    producing_stage: str
    location: str  # "sha256:<hex>"
    revision: str  # the commit this artifact descends from
    size_bytes: int = 0
    file_count: int = 0
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def digest(self) -> str:
        return self.location.removeprefix("sha256:")
