"""Content-addressed, write-once artifact store.

Storage layout: {base_path}/{sha256[0:2]}/{sha256[2:4]}/{sha256}.dat
No delete or update method — artifacts are immutable once stored.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from deployline.core.hasher import content_address, sha256_hex
from deployline.models.artifacts import Artifact

logger = logging.getLogger(__name__)


class ArtifactNotFoundError(FileNotFoundError):
    """Raised when a handle does not resolve to a stored artifact."""


class ArtifactIntegrityError(RuntimeError):
    """Raised when a stored artifact's hash does not match its address."""


class ContentAddressedStore:
    """SHA-256 keyed, write-once artifact store.

    Every artifact is stored under its SHA-256 digest, so the handle is
    both identity and integrity check. Storing the same content twice is
    a no-op; concurrent executions never overwrite each other's outputs.

    Parameters
    ----------
    base_path:
        Root directory for artifact storage.
    """

    def __init__(self, base_path: Path) -> None:
        self._base = Path(base_path)
        self._base.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base

    @staticmethod
    def _extract_digest(handle: str) -> str:
        """Strip the ``sha256:`` prefix from a handle, if present."""
        return handle.removeprefix("sha256:")

    def _artifact_path(self, sha256_digest: str) -> Path:
        return self._base / sha256_digest[:2] / sha256_digest[2:4] / f"{sha256_digest}.dat"

    # ------------------------------------------------------------------
    # put / get
    # ------------------------------------------------------------------

    def put(self, key: str, data: bytes) -> str:
        """Store *data* and return its handle (``sha256:<hex>``).

        *key* is a logical label used for logging only; the address is
        derived from the content. Existing content is verified, never
        rewritten.
        """
        address = content_address(data)
        digest = self._extract_digest(address)
        path = self._artifact_path(digest)

        if path.exists():
            if not self.verify(digest):
                raise ArtifactIntegrityError(
                    f"Existing artifact at {digest} failed integrity check"
                )
            logger.debug("Artifact %s already stored as %s", key, digest[:12])
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".put-")
            try:
                with os.fdopen(fd, "wb") as fh:
                    fh.write(data)
                os.replace(tmp, path)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise
            logger.info("Stored artifact %s as %s (%d bytes)", key, digest[:12], len(data))

        return address

    def get(self, handle: str) -> bytes:
        """Return artifact bytes, or raise ``ArtifactNotFoundError``."""
        path = self._artifact_path(self._extract_digest(handle))
        if not path.exists():
            raise ArtifactNotFoundError(f"Artifact not found: {handle}")
        return path.read_bytes()

    def publish(
        self,
        data: bytes,
        *,
        name: str,
        stage: str,
        revision: str,
        file_count: int = 0,
    ) -> Artifact:
        """Store *data* and return the immutable ``Artifact`` record for it."""
        handle = self.put(name, data)
        return Artifact(
            name=name,
            producing_stage=stage,
            location=handle,
            revision=revision,
            size_bytes=len(data),
            file_count=file_count,
        )

    # ------------------------------------------------------------------
    # Check and verify
    # ------------------------------------------------------------------

    def exists(self, handle: str) -> bool:
        return self._artifact_path(self._extract_digest(handle)).exists()

    def verify(self, handle: str) -> bool:
        """Re-hash stored data and compare against the handle."""
        digest = self._extract_digest(handle)
        path = self._artifact_path(digest)
        if not path.exists():
            return False
        return sha256_hex(path.read_bytes()) == digest
