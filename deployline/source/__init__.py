"""Source stage: repositories and the commit trigger."""

from deployline.source.repository import GitRepository, InMemoryRepository, SourceRepository
from deployline.source.trigger import SourceTrigger

__all__ = ["GitRepository", "InMemoryRepository", "SourceRepository", "SourceTrigger"]
