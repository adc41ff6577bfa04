"""Pipeline error taxonomy.

Each error maps to an ``ErrorKind`` so that the final pipeline result can
tell operators apart "bad code" (``PhaseCommandFailed``) from "deploy-time
outage" (``DeployCallFailed``). Nothing here is retried automatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from deployline.models.results import ErrorInfo, ErrorKind

if TYPE_CHECKING:
    from deployline.models.artifacts import Artifact
    from deployline.models.results import PhaseResult


class PipelineError(RuntimeError):
    """Base class for errors surfaced in a ``PipelineResult``."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def to_info(self, *, stage: str = "") -> ErrorInfo:
        return ErrorInfo(kind=self.kind, message=str(self), stage=stage)


class SourceUnavailableError(PipelineError):
    """The trigger could not snapshot the requested revision."""

    kind = ErrorKind.SOURCE_UNAVAILABLE

    def __init__(self, revision: str, reason: str) -> None:
        super().__init__(f"Revision {revision!r} unavailable: {reason}")
        self.revision = revision
        self.reason = reason


class PhaseCommandFailedError(PipelineError):
    """A build command exited non-zero (or was killed on timeout)."""

    kind = ErrorKind.PHASE_COMMAND_FAILED

    def __init__(
        self,
        phase: str,
        command: str,
        exit_code: int,
        *,
        phases: list[PhaseResult] | None = None,
    ) -> None:
        super().__init__(
            f"Command {command!r} in phase {phase} exited with {exit_code}"
        )
        self.phase = phase
        self.command = command
        self.exit_code = exit_code
        self.phases = phases or []

    def to_info(self, *, stage: str = "") -> ErrorInfo:
        return ErrorInfo(
            kind=self.kind,
            message=str(self),
            stage=stage,
            phase=self.phase,
            command=self.command,
            exit_code=self.exit_code,
        )


class DeployCallFailedError(PipelineError):
    """The update-function-code call failed after a successful build.

    The build artifact is kept (``artifact``); the live function is left
    as it was.
    """

    kind = ErrorKind.DEPLOY_CALL_FAILED

    def __init__(
        self,
        reason: str,
        *,
        artifact: Artifact | None = None,
        phases: list[PhaseResult] | None = None,
        function_identity: str = "",
    ) -> None:
        super().__init__(f"Deploy call failed: {reason}")
        self.reason = reason
        self.artifact = artifact
        self.phases = phases or []
        self.function_identity = function_identity

    def to_info(self, *, stage: str = "") -> ErrorInfo:
        return ErrorInfo(
            kind=self.kind,
            message=str(self),
            stage=stage,
            phase="post_build",
            reason=self.reason,
        )


class CredentialScopeError(DeployCallFailedError):
    """The deploy credential does not permit the requested call."""


class CacheUnavailableError(PipelineError):
    """The build cache could not be read or written.

    Non-fatal: the executor logs it and builds without cache benefit.
    """

    kind = ErrorKind.CACHE_UNAVAILABLE
