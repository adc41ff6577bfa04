"""Load buildspec documents (YAML file, YAML text or mapping)."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from deployline.models.buildspec import BuildSpec


class BuildSpecError(ValueError):
    """Raised when a buildspec document cannot be parsed or is invalid."""


def parse_buildspec(document: dict[str, Any]) -> BuildSpec:
    """Validate a buildspec mapping.

    The mapping may use the full form (``{"phases": {...}}``) or the
    short form where the phases are the top-level keys
    (``{"install": [...], "build": [...], "post_build": [...]}``).
    """
    if not isinstance(document, dict):
        raise BuildSpecError(
            f"Buildspec must be a mapping, got {type(document).__name__}"
        )
    if "phases" not in document and set(document) & {"install", "build", "post_build"}:
        document = {"phases": document}
    try:
        return BuildSpec.model_validate(document)
    except ValidationError as exc:
        raise BuildSpecError(f"Invalid buildspec: {exc}") from exc


def load_buildspec_text(text: str) -> BuildSpec:
    try:
        document = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise BuildSpecError(f"Buildspec is not valid YAML: {exc}") from exc
    return parse_buildspec(document or {})


def load_buildspec(path: Path) -> BuildSpec:
    path = Path(path)
    if not path.exists():
        raise BuildSpecError(f"Buildspec not found: {path}")
    return load_buildspec_text(path.read_text(encoding="utf-8"))
