"""Deployline configuration — env-driven settings plus per-pipeline config.

Reads from a .env file and DEPLOYLINE_* environment variables.
"""

from __future__ import annotations

import logging
from pathlib import Path

from pydantic import BaseModel, ConfigDict
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.logging import RichHandler

from deployline.models.buildspec import DEFAULT_BUILD_IMAGE


class ProdConfig(BaseSettings):
    """Process-wide configuration with environment variable overrides.

    Examples
    --------
    Override via environment::

        export DEPLOYLINE_ENVIRONMENT=staging
        export DEPLOYLINE_LOG_LEVEL=DEBUG
        export DEPLOYLINE_LEDGER_PATH=/data/ledger.db

    Or via .env file::

        DEPLOYLINE_USE_CONTAINERS=true
        DEPLOYLINE_BUILD_IMAGE=amazonlinux:2.0.20230307.0
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="DEPLOYLINE_",
        env_file_encoding="utf-8",
    )

    # Runtime environment
    environment: str = "development"
    log_level: str = "INFO"

    # Storage paths
    artifact_store_path: Path = Path(".deployline/artifacts")
    cache_path: Path = Path(".deployline/cache")
    ledger_path: Path = Path(".deployline/ledger.db")
    workspace_root: Path | None = None
    function_root: Path = Path(".deployline/functions")
    revocations_path: Path = Path(".deployline/revocations.json")
    keys_path: Path = Path(".deployline/keys")

    # Build environment
    build_image: str = DEFAULT_BUILD_IMAGE
    use_containers: bool = False
    command_timeout_seconds: float = 900.0

    # Concurrency
    max_concurrent_executions: int = 4

    @property
    def is_production(self) -> bool:
        """Whether running in production mode."""
        return self.environment == "production"


class PipelineConfig(BaseModel):
    """One pipeline: which repository builds into which function."""

    model_config = ConfigDict(frozen=True)

    pipeline_name: str = "deployline"
    repository: Path = Path(".")
    function_identity: str
    buildspec_path: Path = Path("buildspec.yml")


def configure_logging(level: str = "INFO") -> None:
    """Route stdlib logging through Rich. Safe to call more than once."""
    root = logging.getLogger()
    for handler in list(root.handlers):
        if isinstance(handler, RichHandler):
            root.removeHandler(handler)
    root.addHandler(RichHandler(rich_tracebacks=True, show_path=False))
    root.setLevel(level.upper())


# Module-level singleton: `from deployline.config import config`
config = ProdConfig()
