"""Declarative build phase models.

A buildspec is an ordered set of phases (install -> build -> post_build),
each holding an ordered list of commands. Commands are a tagged variant:
``ShellCommand`` runs opaque user text verbatim, ``DeployCommand`` is the
single externally visible side effect and may only appear once, as the
last command of ``post_build``.
"""

from __future__ import annotations

from enum import Enum
from pathlib import PurePosixPath
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_BUILD_IMAGE = "amazonlinux:2.0.20230307.0"

DEPLOY_KEYWORD = "deploy"


class PhaseName(str, Enum):
    INSTALL = "install"
    BUILD = "build"
    POST_BUILD = "post_build"


PHASE_ORDER: list[PhaseName] = [PhaseName.INSTALL, PhaseName.BUILD, PhaseName.POST_BUILD]


def _workspace_relative(entry: str) -> str:
    """Reject paths that are absolute or climb out of the build workspace."""
    path = PurePosixPath(entry)
    if path.is_absolute() or ".." in path.parts:
        raise ValueError(f"{entry!r} must be relative to the workspace without '..'")
    return entry


class ShellCommand(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["shell"] = "shell"
    run: str

    def __str__(self) -> str:
        return self.run


class DeployCommand(BaseModel):
    """Publish the build output and update the function's code.

    ``function`` defaults to the function named by the deploy credential.
    ``zip_file`` names a workspace file to ship as-is; when omitted the
    ``artifacts.files`` selection is packaged instead.
    """

    model_config = ConfigDict(frozen=True)

    kind: Literal["deploy"] = "deploy"
    function: str | None = None
    zip_file: str | None = None

    @field_validator("zip_file")
    @classmethod
    def _zip_in_workspace(cls, value: str | None) -> str | None:
        return _workspace_relative(value) if value is not None else None

    def __str__(self) -> str:
        parts = [DEPLOY_KEYWORD]
        if self.function:
            parts.append(f"--function {self.function}")
        if self.zip_file:
            parts.append(f"--zip-file {self.zip_file}")
        return " ".join(parts)


PhaseCommand = Annotated[Union[ShellCommand, DeployCommand], Field(discriminator="kind")]


def _normalize_command(raw: Any) -> Any:
    if isinstance(raw, str):
        if raw.strip() == DEPLOY_KEYWORD:
            return {"kind": "deploy"}
        return {"kind": "shell", "run": raw}
    if isinstance(raw, dict) and "kind" not in raw and DEPLOY_KEYWORD in raw:
        options = raw[DEPLOY_KEYWORD] or {}
        return {"kind": "deploy", **options}
    return raw


class BuildPhase(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: PhaseName
    commands: list[PhaseCommand] = []

    @field_validator("commands", mode="before")
    @classmethod
    def _coerce_commands(cls, value: Any) -> Any:
        if value is None:
            return []
        return [_normalize_command(item) for item in value]

    @property
    def deploy_commands(self) -> list[DeployCommand]:
        return [c for c in self.commands if isinstance(c, DeployCommand)]


class BuildEnvironmentSpec(BaseModel):
    """Pinned base image plus environment variables for every command."""

    model_config = ConfigDict(frozen=True)

    image: str = DEFAULT_BUILD_IMAGE
    variables: dict[str, str] = {}

    @field_validator("variables", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if value is None:
            return {}
        return {str(k): str(v) for k, v in dict(value).items()}


class ArtifactSelection(BaseModel):
    model_config = ConfigDict(frozen=True)

    files: list[str] = ["**/*"]
    base_directory: str = "."

    @field_validator("files", "base_directory")
    @classmethod
    def _inside_workspace(cls, value: str | list[str]) -> str | list[str]:
        if isinstance(value, str):
            return _workspace_relative(value)
        return [_workspace_relative(entry) for entry in value]


class CacheSpec(BaseModel):
    """Workspace paths to persist between builds and the files keying them."""

    model_config = ConfigDict(frozen=True)

    paths: list[str] = []
    key_files: list[str] = []

    @field_validator("paths", "key_files")
    @classmethod
    def _inside_workspace(cls, value: list[str]) -> list[str]:
        return [_workspace_relative(entry) for entry in value]


class BuildSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str = "0.2"
    env: BuildEnvironmentSpec = BuildEnvironmentSpec()
    phases: list[BuildPhase] = []
    artifacts: ArtifactSelection = ArtifactSelection()
    cache: CacheSpec = CacheSpec()

    @field_validator("version", mode="before")
    @classmethod
    def _version_as_text(cls, value: Any) -> Any:
        return str(value)

    @field_validator("phases", mode="before")
    @classmethod
    def _phases_in_declared_order(cls, value: Any) -> Any:
        """Accept ``{install: [...], build: {commands: [...]}}`` mappings.

        Phases are always returned in install -> build -> post_build order,
        whatever order the document lists them in.
        """
        if value is None:
            return []
        if not isinstance(value, dict):
            return value
        known = {p.value for p in PHASE_ORDER}
        unknown = sorted(set(value) - known)
        if unknown:
            raise ValueError(f"Unknown build phase(s): {unknown}. Expected {sorted(known)}")
        phases = []
        for phase in PHASE_ORDER:
            if phase.value not in value:
                continue
            body = value[phase.value]
            commands = body.get("commands", []) if isinstance(body, dict) else body
            phases.append({"name": phase.value, "commands": commands})
        return phases

    @model_validator(mode="after")
    def _single_trailing_deploy(self) -> BuildSpec:
        names = [p.name for p in self.phases]
        if names != sorted(names, key=PHASE_ORDER.index) or len(set(names)) != len(names):
            raise ValueError(f"Phases must be unique and ordered as {[p.value for p in PHASE_ORDER]}")

        deploys = 0
        for phase in self.phases:
            found = phase.deploy_commands
            if found and phase.name != PhaseName.POST_BUILD:
                raise ValueError(
                    f"deploy may only appear in post_build, found in {phase.name.value}"
                )
            deploys += len(found)
            if found and not isinstance(phase.commands[-1], DeployCommand):
                raise ValueError("deploy must be the last command of post_build")
        if deploys > 1:
            raise ValueError(f"deploy may appear at most once, found {deploys}")
        return self

    @property
    def deploys(self) -> bool:
        return any(p.deploy_commands for p in self.phases)

    def phase(self, name: PhaseName) -> BuildPhase | None:
        for p in self.phases:
            if p.name == name:
                return p
        return None
