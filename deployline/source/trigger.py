"""Source trigger: turn a commit into an immutable source artifact."""

from __future__ import annotations

import logging

from deployline.core.archive import pack_files
from deployline.core.artifact_store import ContentAddressedStore
from deployline.core.errors import SourceUnavailableError
from deployline.models.artifacts import Artifact
from deployline.models.events import TriggerEvent
from deployline.models.stages import SOURCE_OUTPUT, SOURCE_STAGE
from deployline.source.repository import SourceRepository

logger = logging.getLogger(__name__)


class SourceTrigger:
    """Snapshots a repository revision into the artifact store.

    Idempotent per revision: the snapshot is packed deterministically, so
    re-triggering the same revision yields the same file content and the
    same content address.
    """

    def __init__(self, repository: SourceRepository, store: ContentAddressedStore) -> None:
        self.repository = repository
        self._store = store

    def on_commit(self, revision: str) -> Artifact:
        if not revision:
            raise SourceUnavailableError(revision, "empty revision")
        files = self.repository.snapshot(revision)
        if not files:
            raise SourceUnavailableError(revision, "revision has no files")

        artifact = self._store.publish(
            pack_files(files),
            name=SOURCE_OUTPUT,
            stage=SOURCE_STAGE,
            revision=revision,
            file_count=len(files),
        )
        logger.info(
            "Source artifact for %s@%s: %s",
            self.repository.name,
            revision,
            artifact.location,
        )
        return artifact

    def event_for(self, revision: str) -> TriggerEvent:
        """Build the trigger event a commit hook would deliver."""
        return TriggerEvent(repository=self.repository.name, revision=revision)
