"""Command runners: how one shell command is executed in a workspace.

Commands are opaque, user-supplied text executed verbatim. Each command
gets its own shell rooted at the workspace. A command that outlives the
timeout is killed and reported with exit code 124, which the executor
surfaces as ``PhaseCommandFailed`` like any other non-zero exit.
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
import uuid
from pathlib import Path
from typing import Protocol, runtime_checkable

from deployline.models.results import CommandResult

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
CONTAINER_NAME_PREFIX = "deployline-"
CONTAINER_REMOVE_TIMEOUT = 30.0
OUTPUT_TAIL_CHARS = 4000


@runtime_checkable
class CommandRunner(Protocol):
    def run(
        self,
        command: str,
        *,
        workspace: Path,
        env: dict[str, str],
        timeout: float,
    ) -> CommandResult:
        ...


def _tail(data: bytes | str | None) -> str:
    if data is None:
        return ""
    if isinstance(data, bytes):
        data = data.decode("utf-8", "replace")
    return data[-OUTPUT_TAIL_CHARS:]


def _run_process(
    args: list[str] | str,
    *,
    shell: bool,
    cwd: Path | None,
    env: dict[str, str] | None,
    timeout: float,
    label: str,
) -> CommandResult:
    start = time.monotonic()
    try:
        proc = subprocess.run(
            args,
            shell=shell,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired as exc:
        logger.error("Command timed out after %ss: %s", timeout, label)
        return CommandResult(
            command=label,
            exit_code=TIMEOUT_EXIT_CODE,
            output=_tail(exc.output),
            duration_ms=int((time.monotonic() - start) * 1000),
            timed_out=True,
        )
    except OSError as exc:
        logger.error("Command could not start: %s (%s)", label, exc)
        return CommandResult(
            command=label,
            exit_code=127,
            output=str(exc),
            duration_ms=int((time.monotonic() - start) * 1000),
        )
    return CommandResult(
        command=label,
        exit_code=proc.returncode,
        output=_tail(proc.stdout),
        duration_ms=int((time.monotonic() - start) * 1000),
    )


class LocalShellRunner:
    """Runs commands with the host shell.

    The build image pin is recorded for cache fingerprints but not
    enforced; use ``ContainerRunner`` for reproducible builds.
    """

    def run(
        self,
        command: str,
        *,
        workspace: Path,
        env: dict[str, str],
        timeout: float,
    ) -> CommandResult:
        merged = {**os.environ, **env}
        return _run_process(
            command, shell=True, cwd=workspace, env=merged, timeout=timeout, label=command
        )


class ContainerRunner:
    """Runs every command in a throwaway container of the pinned image.

    Each container gets a unique name. Killing the engine CLI does not
    stop the container, so on timeout it is force-removed by that name.

    Parameters
    ----------
    image:
        Fully pinned image reference (tag or digest).
    engine:
        Container CLI; ``docker`` or a compatible replacement.
    """

    def __init__(self, image: str, engine: str = "docker") -> None:
        self.image = image
        self.engine = engine

    def build_args(
        self, command: str, *, workspace: Path, env: dict[str, str], name: str
    ) -> list[str]:
        args = [
            self.engine,
            "run",
            "--rm",
            "--name",
            name,
            "--network=host",
            "-v",
            f"{Path(workspace).resolve()}:/workspace",
            "-w",
            "/workspace",
        ]
        for key in sorted(env):
            args.extend(["-e", f"{key}={env[key]}"])
        args.extend([self.image, "sh", "-c", command])
        return args

    def run(
        self,
        command: str,
        *,
        workspace: Path,
        env: dict[str, str],
        timeout: float,
    ) -> CommandResult:
        name = f"{CONTAINER_NAME_PREFIX}{uuid.uuid4().hex[:12]}"
        args = self.build_args(command, workspace=workspace, env=env, name=name)
        result = _run_process(
            args, shell=False, cwd=None, env=None, timeout=timeout, label=command
        )
        if result.timed_out:
            self.remove(name)
        return result

    def remove(self, name: str) -> None:
        """Force-remove container *name*, killing it if still running."""
        try:
            proc = subprocess.run(
                [self.engine, "rm", "-f", name],
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=CONTAINER_REMOVE_TIMEOUT,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.error("Could not remove timed-out container %s: %s", name, exc)
            return
        if proc.returncode != 0:
            logger.error(
                "Removing timed-out container %s exited with %d: %s",
                name,
                proc.returncode,
                _tail(proc.stdout),
            )
        else:
            logger.warning("Removed timed-out container %s", name)
