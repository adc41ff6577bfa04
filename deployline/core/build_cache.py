"""Persistent key-value blob cache keyed by build environment fingerprint.

Unlike the artifact store, entries are overwritten on write. Every write
lands in a temp file that is atomically renamed over the key, so
concurrent readers see either the old blob or the new one, never a torn
mix. Last write wins; entries are advisory.

The pipeline never deletes entries. Eviction belongs to whatever manages
the underlying directory.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from deployline.core.errors import CacheUnavailableError

logger = logging.getLogger(__name__)

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


@runtime_checkable
class CacheBackend(Protocol):
    """Anything the Build Executor can read and refresh cache blobs through."""

    def get(self, key: str) -> bytes | None:
        """Return the blob for *key*, ``None`` on miss.

        Raises ``CacheUnavailableError`` when the cache cannot be reached.
        """
        ...

    def put(self, key: str, data: bytes) -> str:
        """Store *data* under *key*, replacing any previous value."""
        ...


class BuildCache:
    """Directory-backed ``CacheBackend``.

    Parameters
    ----------
    base_path:
        Root directory for cache blobs. Created on first write.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)

    def _blob_path(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise ValueError(f"Invalid cache key: {key!r}")
        return self._base / key[:2] / f"{key}.blob"

    def get(self, key: str) -> bytes | None:
        path = self._blob_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as exc:
            raise CacheUnavailableError(f"Cache read failed for {key[:12]}: {exc}") from exc

    def put(self, key: str, data: bytes) -> str:
        path = self._blob_path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".cache-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise CacheUnavailableError(f"Cache write failed for {key[:12]}: {exc}") from exc
        logger.debug("Cache entry %s refreshed (%d bytes)", key[:12], len(data))
        return key

    def exists(self, key: str) -> bool:
        return self._blob_path(key).exists()
