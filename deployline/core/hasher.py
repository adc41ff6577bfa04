"""Canonical hashing helpers for content addressing and cache fingerprints."""

from __future__ import annotations

import hashlib
import json
from typing import Any


def canonical_json_bytes(obj: Any) -> bytes:
    """Produce canonical JSON bytes — deterministic, sorted, compact.

    - sorted keys
    - no whitespace separators (",", ":")
    - ensure_ascii=True
    - UTF-8 encoding
    """
    return json.dumps(
        obj, sort_keys=True, separators=(",", ":"), ensure_ascii=True
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    """Return the SHA-256 hex digest of raw bytes."""
    return hashlib.sha256(data).hexdigest()


def content_address(data: bytes) -> str:
    """Return the ``sha256:<hex>`` address used by the artifact store."""
    return f"sha256:{sha256_hex(data)}"


def compute_cache_fingerprint(
    *,
    image: str,
    phase: str,
    commands: list[str],
    variables: dict[str, str] | None = None,
    key_file_digests: dict[str, str] | None = None,
) -> str:
    """SHA-256 of canonical(build environment state for one phase).

    Semantically unchanged inputs (same pinned image, variables, phase
    commands and key file contents) map to the same cache key.
    """
    payload = {
        "image": image,
        "phase": phase,
        "commands": commands,
        "variables": variables or {},
        "key_files": key_file_digests or {},
    }
    return sha256_hex(canonical_json_bytes(payload))
