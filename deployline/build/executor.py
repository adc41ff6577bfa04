"""Build Executor — runs the buildspec phases and performs the single deploy.

Lifecycle per ``execute()``:

    unpack source into a fresh workspace
        -> for each phase (install, build, post_build):
               restore cache -> run commands in order -> refresh cache
        -> deploy (inside post_build) or package the output
        -> remove workspace

A failing command stops everything after it; the deploy call is reached
only when every earlier command succeeded, and is made at most once.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
import zipfile
from pathlib import Path

from deployline.build.runners import CommandRunner, LocalShellRunner
from deployline.core.archive import (
    UnsafeArchiveError,
    collect_files,
    extract_to,
    pack_files,
)
from deployline.core.artifact_store import ContentAddressedStore
from deployline.core.build_cache import CacheBackend
from deployline.core.errors import (
    CacheUnavailableError,
    DeployCallFailedError,
    PhaseCommandFailedError,
)
from deployline.core.hasher import compute_cache_fingerprint, sha256_hex
from deployline.deploy.client import ScopedDeployClient
from deployline.models.artifacts import Artifact
from deployline.models.buildspec import BuildPhase, BuildSpec, DeployCommand
from deployline.models.results import (
    BuildOutput,
    CommandResult,
    DeployResult,
    PhaseResult,
)
from deployline.models.stages import BUILD_OUTPUT, BUILD_STAGE, StageStatus

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 900.0
ARTIFACT_COMMAND_LABEL = "artifacts"


class BuildExecutor:
    """Executes one buildspec against source artifacts.

    Parameters
    ----------
    buildspec:
        The validated phase script.
    store:
        Artifact store; source is read from it, build output published to it.
    deployer:
        Capability for the one deploy call. ``None`` means the buildspec
        must not deploy.
    runner:
        How commands are executed. Defaults to ``LocalShellRunner``.
    workspace_root:
        Parent directory for per-run workspaces (system temp if omitted).
    command_timeout:
        Wall-clock limit per command, in seconds.
    """

    def __init__(
        self,
        buildspec: BuildSpec,
        store: ContentAddressedStore,
        deployer: ScopedDeployClient | None = None,
        *,
        runner: CommandRunner | None = None,
        workspace_root: Path | None = None,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
    ) -> None:
        self.buildspec = buildspec
        self._store = store
        self._deployer = deployer
        self._runner = runner or LocalShellRunner()
        self._workspace_root = Path(workspace_root) if workspace_root else None
        self._timeout = command_timeout

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def execute(
        self, source_artifact: Artifact, cache: CacheBackend | None = None
    ) -> BuildOutput:
        """Build *source_artifact* and, if the buildspec says so, deploy it.

        Raises ``PhaseCommandFailedError`` on the first failing command and
        ``DeployCallFailedError`` if the deploy call is refused or fails.
        """
        if self._workspace_root is not None:
            self._workspace_root.mkdir(parents=True, exist_ok=True)
        workspace = Path(
            tempfile.mkdtemp(prefix="build-", dir=self._workspace_root)
        )
        try:
            extract_to(self._store.get(source_artifact.location), workspace)
            return self._run_phases(source_artifact, workspace, cache)
        finally:
            shutil.rmtree(workspace, ignore_errors=True)

    # ------------------------------------------------------------------
    # Phases
    # ------------------------------------------------------------------

    def _run_phases(
        self, source: Artifact, workspace: Path, cache: CacheBackend | None
    ) -> BuildOutput:
        spec = self.buildspec
        env = {
            **spec.env.variables,
            "SOURCE_REVISION": source.revision,
            "SOURCE_ARTIFACT": source.location,
        }
        completed: list[PhaseResult] = []
        warnings: list[str] = []
        key_digests = self._key_file_digests(workspace, warnings)
        if key_digests is None:
            cache = None
        artifact: Artifact | None = None
        deploy: DeployResult | None = None

        for phase in spec.phases:
            logger.info("Entering %s phase (%d commands)", phase.name.value, len(phase.commands))
            cache_key = compute_cache_fingerprint(
                image=spec.env.image,
                phase=phase.name.value,
                commands=[str(c) for c in phase.commands],
                variables=spec.env.variables,
                key_file_digests=key_digests,
            )
            cache_hit = self._restore_cache(cache, cache_key, workspace, warnings)

            results: list[CommandResult] = []
            for command in phase.commands:
                if isinstance(command, DeployCommand):
                    try:
                        artifact = self._package(workspace, source, phase, completed, command)
                        deploy = self._deploy(command, artifact, completed)
                    except (PhaseCommandFailedError, DeployCallFailedError) as exc:
                        results.append(
                            CommandResult(command=str(command), exit_code=1, output=str(exc))
                        )
                        exc.phases = [
                            *completed,
                            PhaseResult(
                                phase=phase.name,
                                status=StageStatus.FAILED,
                                commands=results,
                                cache_hit=cache_hit,
                            ),
                        ]
                        raise
                    results.append(
                        CommandResult(
                            command=str(command),
                            exit_code=0,
                            output=f"deployed {artifact.location} to {deploy.function_identity}",
                        )
                    )
                    continue

                result = self._runner.run(
                    command.run, workspace=workspace, env=env, timeout=self._timeout
                )
                results.append(result)
                if not result.ok:
                    completed.append(
                        PhaseResult(
                            phase=phase.name,
                            status=StageStatus.FAILED,
                            commands=results,
                            cache_hit=cache_hit,
                        )
                    )
                    logger.error(
                        "Phase %s failed: %r exited with %d",
                        phase.name.value,
                        result.command,
                        result.exit_code,
                    )
                    raise PhaseCommandFailedError(
                        phase.name.value, result.command, result.exit_code, phases=completed
                    )

            self._save_cache(cache, cache_key, workspace, warnings)
            completed.append(
                PhaseResult(
                    phase=phase.name,
                    status=StageStatus.SUCCEEDED,
                    commands=results,
                    cache_hit=cache_hit,
                )
            )

        if artifact is None:
            artifact = self._package(workspace, source, None, completed, None)

        return BuildOutput(
            artifact=artifact,
            deploy=deploy,
            phases=completed,
            cache_warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _key_file_digests(self, workspace: Path, warnings: list[str]) -> dict[str, str] | None:
        """Digest the cache key files; ``None`` disables the cache for this run."""
        try:
            files = collect_files(workspace, self.buildspec.cache.key_files)
        except (OSError, ValueError, NotImplementedError) as exc:
            message = f"cache disabled, key files unreadable: {exc}"
            logger.warning("Building without cache: %s", message)
            warnings.append(message)
            return None
        return {path: sha256_hex(data) for path, data in sorted(files.items())}

    def _cache_patterns(self, workspace: Path) -> list[str]:
        patterns = []
        for entry in self.buildspec.cache.paths:
            if (workspace / entry).is_dir():
                patterns.append(f"{entry.rstrip('/')}/**/*")
            else:
                patterns.append(entry)
        return patterns

    def _restore_cache(
        self,
        cache: CacheBackend | None,
        key: str,
        workspace: Path,
        warnings: list[str],
    ) -> bool:
        if cache is None or not self.buildspec.cache.paths:
            return False
        try:
            blob = cache.get(key)
            if blob is None:
                logger.debug("Cache miss for %s", key[:12])
                return False
            count = extract_to(blob, workspace)
        except (CacheUnavailableError, OSError, zipfile.BadZipFile, UnsafeArchiveError) as exc:
            message = f"cache read skipped ({key[:12]}): {exc}"
            logger.warning("Building without cache: %s", message)
            warnings.append(message)
            return False
        logger.info("Cache hit for %s: restored %d files", key[:12], count)
        return True

    def _save_cache(
        self,
        cache: CacheBackend | None,
        key: str,
        workspace: Path,
        warnings: list[str],
    ) -> None:
        if cache is None or not self.buildspec.cache.paths:
            return
        try:
            files = collect_files(workspace, self._cache_patterns(workspace))
            if not files:
                return
            cache.put(key, pack_files(files))
        except (CacheUnavailableError, OSError, ValueError, NotImplementedError) as exc:
            message = f"cache write skipped ({key[:12]}): {exc}"
            logger.warning("Cache not refreshed: %s", message)
            warnings.append(message)

    # ------------------------------------------------------------------
    # Output and deploy
    # ------------------------------------------------------------------

    def _package(
        self,
        workspace: Path,
        source: Artifact,
        phase: BuildPhase | None,
        completed: list[PhaseResult],
        command: DeployCommand | None,
    ) -> Artifact:
        """Publish the build output as a write-once ``Artifact``."""
        phase_name = phase.name.value if phase else "post_build"
        label = str(command) if command else ARTIFACT_COMMAND_LABEL

        if command is not None and command.zip_file:
            path = workspace / command.zip_file
            if not path.is_file():
                logger.error("Deploy bundle %s was not produced", command.zip_file)
                raise PhaseCommandFailedError(phase_name, label, 1, phases=completed)
            data = path.read_bytes()
            file_count = 1
        else:
            selection = self.buildspec.artifacts
            files = collect_files(workspace / selection.base_directory, selection.files)
            if not files:
                logger.error("Artifact selection %s matched no files", selection.files)
                raise PhaseCommandFailedError(phase_name, label, 1, phases=completed)
            data = pack_files(files)
            file_count = len(files)

        return self._store.publish(
            data,
            name=BUILD_OUTPUT,
            stage=BUILD_STAGE,
            revision=source.revision,
            file_count=file_count,
        )

    def _deploy(
        self,
        command: DeployCommand,
        artifact: Artifact,
        completed: list[PhaseResult],
    ) -> DeployResult:
        if self._deployer is None:
            raise DeployCallFailedError(
                "no deploy capability configured", artifact=artifact, phases=completed
            )
        function_identity = command.function or self._deployer.function_identity
        try:
            ack = self._deployer.update_function_code(
                function_identity, artifact.location, self._store.get(artifact.location)
            )
        except DeployCallFailedError as exc:
            exc.artifact = artifact
            exc.function_identity = function_identity
            logger.error("Deploy of %s failed: %s", artifact.location, exc.reason)
            raise

        logger.info("Deployed %s to %s", artifact.location, function_identity)
        return DeployResult(
            function_identity=function_identity,
            artifact_location=artifact.location,
            succeeded=True,
            ack=ack,
        )
