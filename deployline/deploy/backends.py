"""Function backends: where ``update_function_code`` lands.

The compute runtime itself is out of scope; a backend only has to accept
new code for a function identity and acknowledge it.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict

from deployline.core.hasher import sha256_hex
from deployline.models.results import DeployAck

logger = logging.getLogger(__name__)


class FunctionBackendError(RuntimeError):
    """Raised by a backend when the update is rejected or cannot be applied."""


@runtime_checkable
class FunctionBackend(Protocol):
    def update_function_code(
        self, function_identity: str, artifact_location: str, code: bytes
    ) -> DeployAck:
        """Replace the function's code; raise ``FunctionBackendError`` on failure."""
        ...


class LocalFunctionBackend:
    """Deploys into a directory tree, one folder per function.

    ``{root}/{function}/code.zip`` is replaced atomically, then
    ``release.json`` records which artifact is live.
    """

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    def code_path(self, function_identity: str) -> Path:
        safe = function_identity.replace("/", "_").replace(":", "_")
        return self._root / safe / "code.zip"

    def update_function_code(
        self, function_identity: str, artifact_location: str, code: bytes
    ) -> DeployAck:
        target = self.code_path(function_identity)
        revision_id = uuid.uuid4().hex[:12]
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=".code-")
            with os.fdopen(fd, "wb") as fh:
                fh.write(code)
            os.replace(tmp, target)
            release = {
                "function_identity": function_identity,
                "artifact_location": artifact_location,
                "code_sha256": sha256_hex(code),
                "revision_id": revision_id,
                "deployed_at": datetime.now(timezone.utc).isoformat(),
            }
            (target.parent / "release.json").write_text(
                json.dumps(release, indent=2), encoding="utf-8"
            )
        except OSError as exc:
            raise FunctionBackendError(f"Cannot write code for {function_identity}: {exc}") from exc

        logger.info("Function %s now runs %s", function_identity, artifact_location)
        return DeployAck(
            function_identity=function_identity,
            artifact_location=artifact_location,
            code_sha256=sha256_hex(code),
            revision_id=revision_id,
        )


class RecordedCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    function_identity: str
    artifact_location: str
    code_sha256: str


class RecordingFunctionBackend:
    """Keeps every call in memory; optionally fails on demand.

    Parameters
    ----------
    fail_with:
        When set, every call records nothing and raises
        ``FunctionBackendError`` with this message.
    """

    def __init__(self, fail_with: str | None = None) -> None:
        self.fail_with = fail_with
        self._lock = threading.Lock()
        self._calls: list[RecordedCall] = []

    @property
    def calls(self) -> list[RecordedCall]:
        with self._lock:
            return list(self._calls)

    def update_function_code(
        self, function_identity: str, artifact_location: str, code: bytes
    ) -> DeployAck:
        if self.fail_with:
            raise FunctionBackendError(self.fail_with)
        digest = sha256_hex(code)
        with self._lock:
            self._calls.append(
                RecordedCall(
                    function_identity=function_identity,
                    artifact_location=artifact_location,
                    code_sha256=digest,
                )
            )
            revision_id = str(len(self._calls))
        return DeployAck(
            function_identity=function_identity,
            artifact_location=artifact_location,
            code_sha256=digest,
            revision_id=revision_id,
        )
