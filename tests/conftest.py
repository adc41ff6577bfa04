"""Shared test fixtures for Deployline."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from deployline.build.buildspec import load_buildspec_text
from deployline.build.executor import BuildExecutor
from deployline.build.runners import LocalShellRunner
from deployline.core.artifact_store import ContentAddressedStore
from deployline.core.build_cache import BuildCache, CacheBackend
from deployline.core.controller import PipelineController
from deployline.core.event_bus import EventBus
from deployline.core.run_ledger import RunLedger
from deployline.core.stage_machine import StageMachine
from deployline.deploy.backends import RecordingFunctionBackend
from deployline.deploy.client import ScopedDeployClient
from deployline.deploy.credentials import CredentialAuthority, RevocationList
from deployline.models.buildspec import BuildSpec
from deployline.models.credentials import DeployCredential
from deployline.source.repository import InMemoryRepository
from deployline.source.trigger import SourceTrigger

FUNCTION_ID = "hello-fn"

DEPLOYING_BUILDSPEC = """
version: 0.2
phases:
  install:
    commands:
      - echo installing > install.log
  build:
    commands:
      - mkdir -p dist
      - cp app.py dist/app.py
  post_build:
    commands:
      - deploy
artifacts:
  base_directory: dist
  files:
    - "**/*"
"""


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def artifact_store(tmp_dir: Path) -> ContentAddressedStore:
    """Provide a fresh ContentAddressedStore in a temp directory."""
    return ContentAddressedStore(tmp_dir / "artifacts")


@pytest.fixture
def build_cache(tmp_dir: Path) -> BuildCache:
    """Provide an empty directory-backed build cache."""
    return BuildCache(tmp_dir / "cache")


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def stage_machine(ledger: RunLedger, bus: EventBus) -> StageMachine:
    """Provide a StageMachine over the default Source -> Build plan."""
    return StageMachine(ledger=ledger, bus=bus)


@pytest.fixture
def execution_id() -> str:
    """Provide a deterministic test execution ID."""
    return "dl-test-exec-001"


# ---------------------------------------------------------------------------
# Source side
# ---------------------------------------------------------------------------


@pytest.fixture
def repository() -> InMemoryRepository:
    """A repository with one commit, ``abc123``."""
    return InMemoryRepository(
        name="hello",
        revisions={
            "abc123": {
                "app.py": b"def handler(event, context):\n    return 'hello'\n",
                "requirements.txt": b"",
            }
        },
    )


@pytest.fixture
def trigger(repository: InMemoryRepository, artifact_store: ContentAddressedStore) -> SourceTrigger:
    return SourceTrigger(repository, artifact_store)


# ---------------------------------------------------------------------------
# Deploy side
# ---------------------------------------------------------------------------


@pytest.fixture
def authority() -> CredentialAuthority:
    return CredentialAuthority()


@pytest.fixture
def credential(authority: CredentialAuthority) -> DeployCredential:
    """UpdateFunctionCode on ``hello-fn`` only."""
    return authority.grant("build", FUNCTION_ID)


@pytest.fixture
def revocations(tmp_dir: Path) -> RevocationList:
    return RevocationList(tmp_dir / "revocations.json")


@pytest.fixture
def backend() -> RecordingFunctionBackend:
    return RecordingFunctionBackend()


@pytest.fixture
def deployer(
    backend: RecordingFunctionBackend,
    credential: DeployCredential,
    authority: CredentialAuthority,
    revocations: RevocationList,
) -> ScopedDeployClient:
    return ScopedDeployClient(backend, credential, authority.verify_key_hex, revocations)


# ---------------------------------------------------------------------------
# Build side factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_buildspec() -> Callable[[str], BuildSpec]:
    """Factory fixture: parse YAML text into a BuildSpec."""

    def _factory(text: str = DEPLOYING_BUILDSPEC) -> BuildSpec:
        return load_buildspec_text(text)

    return _factory


@pytest.fixture
def make_executor(
    tmp_dir: Path,
    artifact_store: ContentAddressedStore,
    deployer: ScopedDeployClient,
    make_buildspec: Callable[[str], BuildSpec],
) -> Callable[..., BuildExecutor]:
    """Factory fixture: a BuildExecutor with a local shell runner."""

    def _factory(text: str = DEPLOYING_BUILDSPEC, **overrides: Any) -> BuildExecutor:
        kwargs: dict[str, Any] = {
            "runner": LocalShellRunner(),
            "workspace_root": tmp_dir / "workspaces",
            "command_timeout": 30.0,
        }
        deploy_client = overrides.pop("deployer", deployer)
        kwargs.update(overrides)
        return BuildExecutor(make_buildspec(text), artifact_store, deploy_client, **kwargs)

    return _factory


@pytest.fixture
def make_controller(
    trigger: SourceTrigger,
    build_cache: BuildCache,
    ledger: RunLedger,
    bus: EventBus,
    make_executor: Callable[..., BuildExecutor],
) -> Callable[..., PipelineController]:
    """Factory fixture: a fully wired PipelineController."""

    def _factory(
        text: str = DEPLOYING_BUILDSPEC,
        *,
        cache: CacheBackend | None = None,
        **executor_overrides: Any,
    ) -> PipelineController:
        return PipelineController(
            trigger,
            make_executor(text, **executor_overrides),
            cache=cache if cache is not None else build_cache,
            ledger=ledger,
            bus=bus,
        )

    return _factory
