"""Source repositories the trigger can snapshot.

``GitRepository`` reads a committed tree through ``git archive`` so the
working copy never matters. ``InMemoryRepository`` holds revisions as
plain dicts.
"""

from __future__ import annotations

import io
import logging
import subprocess
import tarfile
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

from deployline.core.errors import SourceUnavailableError

logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 120


@runtime_checkable
class SourceRepository(Protocol):
    """A version-controlled source the trigger can snapshot."""

    @property
    def name(self) -> str: ...

    def snapshot(self, revision: str) -> dict[str, bytes]:
        """Return every file at *revision* as ``{posix_path: content}``.

        Raises ``SourceUnavailableError`` if the revision cannot be fetched.
        """
        ...


class GitRepository:
    """A local (or locally cloned) git repository.

    Parameters
    ----------
    path:
        Repository root or bare repository directory.
    name:
        Display name; defaults to the directory name.
    """

    def __init__(self, path: Path, name: str | None = None) -> None:
        self._path = Path(path)
        self._name = name or self._path.resolve().name

    @property
    def name(self) -> str:
        return self._name

    def _git(self, revision: str, *args: str) -> bytes:
        try:
            proc = subprocess.run(
                ["git", "-C", str(self._path), *args],
                capture_output=True,
                timeout=GIT_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise SourceUnavailableError(revision, f"git failed: {exc}") from exc
        if proc.returncode != 0:
            raise SourceUnavailableError(
                revision, proc.stderr.decode("utf-8", "replace").strip() or "git error"
            )
        return proc.stdout

    def resolve(self, revision: str) -> str:
        """Resolve a branch, tag or short sha to the full commit sha."""
        return self._git(revision, "rev-parse", "--verify", "--quiet", f"{revision}^{{commit}}").decode().strip()

    def snapshot(self, revision: str) -> dict[str, bytes]:
        commit = self.resolve(revision)
        raw = self._git(revision, "archive", "--format=tar", commit)
        files: dict[str, bytes] = {}
        with tarfile.open(fileobj=io.BytesIO(raw), mode="r:") as tar:
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                fh = tar.extractfile(member)
                if fh is not None:
                    files[member.name] = fh.read()
        logger.info("Snapshot %s@%s: %d files", self._name, commit[:12], len(files))
        return files


class InMemoryRepository:
    """Revisions held as ``{revision: {path: content}}``."""

    def __init__(self, name: str = "memory", revisions: dict[str, dict[str, bytes]] | None = None) -> None:
        self._name = name
        self._lock = threading.Lock()
        self._revisions: dict[str, dict[str, bytes]] = {
            rev: dict(files) for rev, files in (revisions or {}).items()
        }

    @property
    def name(self) -> str:
        return self._name

    def commit(self, revision: str, files: dict[str, bytes]) -> None:
        with self._lock:
            if revision in self._revisions:
                raise ValueError(f"Revision {revision!r} already exists")
            self._revisions[revision] = dict(files)

    def snapshot(self, revision: str) -> dict[str, bytes]:
        with self._lock:
            if revision not in self._revisions:
                raise SourceUnavailableError(revision, "unknown revision")
            return dict(self._revisions[revision])
