"""Deterministic zip packing for artifacts and cache blobs.

Entries are sorted and stamped with a fixed timestamp and mode, so the
same files always pack to the same bytes (and so the same content
address).
"""

from __future__ import annotations

import io
import zipfile
from pathlib import Path, PurePosixPath

_FIXED_DATE_TIME = (1980, 1, 1, 0, 0, 0)
_FILE_MODE = 0o100644 << 16


class UnsafeArchiveError(ValueError):
    """Raised when an archive member would escape the extraction root."""


def _safe_name(name: str) -> str:
    path = PurePosixPath(name)
    if path.is_absolute() or ".." in path.parts or not path.parts:
        raise UnsafeArchiveError(f"Refusing archive member {name!r}")
    return path.as_posix()


def pack_files(files: dict[str, bytes]) -> bytes:
    """Pack a path -> content mapping into deterministic zip bytes."""
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name in sorted(files):
            info = zipfile.ZipInfo(_safe_name(name), date_time=_FIXED_DATE_TIME)
            info.external_attr = _FILE_MODE
            info.compress_type = zipfile.ZIP_DEFLATED
            zf.writestr(info, files[name])
    return buffer.getvalue()


def unpack_files(data: bytes) -> dict[str, bytes]:
    """Inverse of ``pack_files``."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {
            _safe_name(info.filename): zf.read(info)
            for info in zf.infolist()
            if not info.is_dir()
        }


def extract_to(data: bytes, dest: Path) -> int:
    """Write every archive member under *dest*; returns the file count."""
    files = unpack_files(data)
    for name, content in files.items():
        target = dest / name
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
    return len(files)


def collect_files(root: Path, patterns: list[str]) -> dict[str, bytes]:
    """Read files under *root* matching any glob in *patterns*.

    Keys are POSIX paths relative to *root*.
    """
    root = Path(root)
    collected: dict[str, bytes] = {}
    for pattern in patterns:
        for path in root.glob(pattern):
            if path.is_file():
                collected[path.relative_to(root).as_posix()] = path.read_bytes()
    return collected
