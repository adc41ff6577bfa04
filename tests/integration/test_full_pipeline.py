"""Integration tests — commit to deployed function, end to end.

Covers the operator-visible scenarios: a clean deploy, a failing build
that never deploys, a deploy-time outage, an unreachable cache, two
overlapping commits, and the ``deployline run`` command against a real
git repository.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest
from typer.testing import CliRunner

from deployline.cli.app import app
from deployline.config import config
from deployline.core.archive import unpack_files
from deployline.core.artifact_store import ContentAddressedStore
from deployline.core.controller import PipelineController
from deployline.core.dispatcher import TriggerDispatcher
from deployline.core.errors import CacheUnavailableError
from deployline.core.event_bus import TriggerQueue
from deployline.core.run_ledger import RunLedger
from deployline.deploy.backends import LocalFunctionBackend, RecordingFunctionBackend
from deployline.deploy.client import ScopedDeployClient
from deployline.deploy.credentials import CredentialAuthority, RevocationList
from deployline.models.credentials import DeployCredential
from deployline.models.events import TriggerEvent
from deployline.models.results import ErrorKind
from deployline.models.stages import StageStatus
from deployline.source.repository import InMemoryRepository

FAILING_BUILD = """
phases:
  install:
    commands:
      - echo ok
  build:
    commands:
      - exit 1
  post_build:
    commands:
      - deploy
"""

CACHED = """
phases:
  install:
    commands:
      - mkdir -p deps
      - echo lib > deps/lib.txt
  build:
    commands:
      - mkdir -p dist
      - cp app.py dist/app.py
  post_build:
    commands:
      - deploy
artifacts:
  base_directory: dist
cache:
  paths:
    - deps
"""


class UnreachableCache:
    def get(self, key: str) -> bytes | None:
        raise CacheUnavailableError("connection refused")

    def put(self, key: str, data: bytes) -> str:
        raise CacheUnavailableError("connection refused")


class TestCommitToDeploy:
    def test_clean_commit_deploys_once(
        self,
        make_controller: Callable[..., PipelineController],
        backend: RecordingFunctionBackend,
        artifact_store: ContentAddressedStore,
        ledger: RunLedger,
    ):
        result = make_controller().run(TriggerEvent(repository="hello", revision="abc123"))

        assert result.status == StageStatus.SUCCEEDED
        assert result.source_artifact.revision == "abc123"
        assert result.build_artifact.revision == "abc123"
        assert result.deploy.succeeded is True
        assert result.deploy.function_identity == "hello-fn"

        # Exactly one deploy, carrying the artifact derived from abc123.
        assert len(backend.calls) == 1
        assert backend.calls[0].artifact_location == result.build_artifact.location
        assert "app.py" in unpack_files(artifact_store.get(result.build_artifact.location))

        assert ledger.get_execution(result.execution_id).status == StageStatus.SUCCEEDED

    def test_failing_build_never_deploys(
        self,
        make_controller: Callable[..., PipelineController],
        backend: RecordingFunctionBackend,
    ):
        result = make_controller(FAILING_BUILD).run(TriggerEvent(revision="abc123"))

        assert result.status == StageStatus.FAILED
        assert result.error.kind == ErrorKind.PHASE_COMMAND_FAILED
        assert result.error.phase == "build"
        assert result.error.command == "exit 1"
        assert result.deploy is None
        assert backend.calls == []

    def test_deploy_outage_reported_and_artifact_kept(
        self,
        make_controller: Callable[..., PipelineController],
        authority: CredentialAuthority,
        credential: DeployCredential,
        artifact_store: ContentAddressedStore,
    ):
        outage = ScopedDeployClient(
            RecordingFunctionBackend(fail_with="ServiceException: rate exceeded"),
            credential,
            authority.verify_key_hex,
        )
        result = make_controller(deployer=outage).run(TriggerEvent(revision="abc123"))

        assert result.status == StageStatus.FAILED
        assert result.error.kind == ErrorKind.DEPLOY_CALL_FAILED
        assert result.error.reason == "ServiceException: rate exceeded"
        assert result.build_artifact is not None
        assert artifact_store.exists(result.build_artifact.location)
        assert result.deploy is not None and result.deploy.succeeded is False
        assert [p.phase.value for p in result.phases] == ["install", "build", "post_build"]

    def test_revoked_credential_blocks_deploy(
        self,
        make_controller: Callable[..., PipelineController],
        revocations: RevocationList,
        credential: DeployCredential,
        backend: RecordingFunctionBackend,
    ):
        controller = make_controller()
        revocations.revoke(credential.credential_id)
        result = controller.run(TriggerEvent(revision="abc123"))

        assert result.error.kind == ErrorKind.DEPLOY_CALL_FAILED
        assert "revoked" in result.error.reason
        assert backend.calls == []

    def test_credential_for_other_function_refused(
        self,
        make_controller: Callable[..., PipelineController],
        backend: RecordingFunctionBackend,
    ):
        spec = CACHED.replace("      - deploy\n", "      - deploy:\n          function: billing-fn\n")
        result = make_controller(spec).run(TriggerEvent(revision="abc123"))

        assert result.error.kind == ErrorKind.DEPLOY_CALL_FAILED
        assert backend.calls == []

    def test_unreachable_cache_still_deploys(
        self,
        make_controller: Callable[..., PipelineController],
        backend: RecordingFunctionBackend,
    ):
        result = make_controller(CACHED, cache=UnreachableCache()).run(
            TriggerEvent(revision="abc123")
        )

        assert result.succeeded
        assert result.cache_warnings
        assert all(p.cache_hit is False for p in result.phases)
        assert len(backend.calls) == 1

    def test_cache_shared_across_executions(
        self,
        make_controller: Callable[..., PipelineController],
    ):
        controller = make_controller(CACHED)
        controller.run(TriggerEvent(revision="abc123"))
        second = controller.run(TriggerEvent(revision="abc123"))
        assert second.phases[0].cache_hit is True


class TestConcurrentCommits:
    def test_overlapping_commits_each_deploy_their_own_artifact(
        self,
        make_controller: Callable[..., PipelineController],
        repository: InMemoryRepository,
        backend: RecordingFunctionBackend,
    ):
        repository.commit(
            "def456", {"app.py": b"def handler(event, context):\n    return 'v2'\n"}
        )
        queue = TriggerQueue()
        dispatcher = TriggerDispatcher(make_controller(), queue, max_workers=2)
        dispatcher.start()
        queue.put(TriggerEvent(revision="abc123"))
        queue.put(TriggerEvent(revision="def456"))
        results = dispatcher.drain()

        assert len(results) == 2
        assert all(r.succeeded for r in results)
        by_revision = {r.trigger.revision: r for r in results}
        assert by_revision["abc123"].build_artifact.revision == "abc123"
        assert by_revision["def456"].build_artifact.revision == "def456"
        assert (
            by_revision["abc123"].build_artifact.location
            != by_revision["def456"].build_artifact.location
        )
        assert sorted(c.artifact_location for c in backend.calls) == sorted(
            r.build_artifact.location for r in results
        )


class TestLocalFunctionDeploy:
    def test_function_code_replaced(
        self,
        tmp_dir: Path,
        make_controller: Callable[..., PipelineController],
        authority: CredentialAuthority,
        credential: DeployCredential,
        artifact_store: ContentAddressedStore,
    ):
        functions = LocalFunctionBackend(tmp_dir / "functions")
        client = ScopedDeployClient(functions, credential, authority.verify_key_hex)
        result = make_controller(deployer=client).run(TriggerEvent(revision="abc123"))

        assert result.succeeded
        assert functions.code_path("hello-fn").read_bytes() == artifact_store.get(
            result.build_artifact.location
        )


# ---------------------------------------------------------------------------
# Test: `deployline run` against a git repository
# ---------------------------------------------------------------------------


@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestRunCommand:
    @pytest.fixture
    def workspace(self, tmp_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
        state = tmp_dir / "state"
        monkeypatch.setattr(config, "artifact_store_path", state / "artifacts")
        monkeypatch.setattr(config, "cache_path", state / "cache")
        monkeypatch.setattr(config, "ledger_path", state / "ledger.db")
        monkeypatch.setattr(config, "workspace_root", state / "workspaces")
        monkeypatch.setattr(config, "function_root", state / "functions")
        monkeypatch.setattr(config, "revocations_path", state / "revocations.json")
        monkeypatch.setattr(config, "keys_path", state / "keys")
        monkeypatch.setattr(config, "use_containers", False)

        repo = tmp_dir / "repo"
        repo.mkdir()

        def git(*args: str) -> None:
            subprocess.run(["git", "-C", str(repo), *args], check=True, capture_output=True)

        git("init", "-q")
        git("config", "user.email", "dev@example.com")
        git("config", "user.name", "Dev")
        (repo / "app.py").write_text("def handler(event, context):\n    return 'git'\n")
        (repo / "buildspec.yml").write_text(CACHED)
        git("add", ".")
        git("commit", "-q", "-m", "first")
        return repo

    def test_run_deploys_committed_code(self, workspace: Path, tmp_dir: Path):
        cli = CliRunner()
        granted = cli.invoke(app, ["grant", "hello-fn", "--keys", str(tmp_dir / "state" / "keys")])
        assert granted.exit_code == 0, granted.output

        result = cli.invoke(app, ["run", "hello-fn", "--repo", str(workspace), "--quiet"])
        assert result.exit_code == 0, result.output

        deployed = LocalFunctionBackend(tmp_dir / "state" / "functions").code_path("hello-fn")
        assert unpack_files(deployed.read_bytes()) == {
            "app.py": b"def handler(event, context):\n    return 'git'\n"
        }

        history = cli.invoke(app, ["history", "--ledger", str(tmp_dir / "state" / "ledger.db")])
        assert history.exit_code == 0
        executions = RunLedger(tmp_dir / "state" / "ledger.db").list_executions()
        assert [e.status for e in executions] == [StageStatus.SUCCEEDED]

    def test_run_without_credential_is_config_error(self, workspace: Path):
        result = CliRunner().invoke(app, ["run", "hello-fn", "--repo", str(workspace), "--quiet"])
        assert result.exit_code == 2
        assert "grant" in result.output

    def test_unknown_revision_recorded_as_failure(self, workspace: Path, tmp_dir: Path):
        cli = CliRunner()
        cli.invoke(app, ["grant", "hello-fn", "--keys", str(tmp_dir / "state" / "keys")])
        result = cli.invoke(
            app, ["run", "hello-fn", "--repo", str(workspace), "--revision", "nope", "--quiet"]
        )
        assert result.exit_code == 1
        executions = RunLedger(tmp_dir / "state" / "ledger.db").list_executions()
        assert executions[0].error_kind == "SourceUnavailable"

    def test_several_revisions_run_concurrently(
        self, workspace: Path, tmp_dir: Path, monkeypatch: pytest.MonkeyPatch
    ):
        monkeypatch.setattr(config, "max_concurrent_executions", 2)
        (workspace / "app.py").write_text("def handler(event, context):\n    return 'v2'\n")
        subprocess.run(
            ["git", "-C", str(workspace), "commit", "-q", "-am", "second"],
            check=True,
            capture_output=True,
        )

        cli = CliRunner()
        cli.invoke(app, ["grant", "hello-fn", "--keys", str(tmp_dir / "state" / "keys")])
        result = cli.invoke(
            app,
            ["run", "hello-fn", "--repo", str(workspace), "-r", "HEAD~1", "-r", "HEAD", "--quiet"],
        )
        assert result.exit_code == 0, result.output

        executions = RunLedger(tmp_dir / "state" / "ledger.db").list_executions()
        assert len(executions) == 2
        assert all(e.status == StageStatus.SUCCEEDED for e in executions)
        assert len({e.revision for e in executions}) == 2
