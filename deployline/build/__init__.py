"""Build stage: buildspec loading, command runners and the executor."""

from deployline.build.buildspec import (
    BuildSpecError,
    load_buildspec,
    load_buildspec_text,
    parse_buildspec,
)
from deployline.build.executor import BuildExecutor
from deployline.build.runners import CommandRunner, ContainerRunner, LocalShellRunner

__all__ = [
    "BuildExecutor",
    "BuildSpecError",
    "load_buildspec",
    "load_buildspec_text",
    "parse_buildspec",
    "CommandRunner",
    "ContainerRunner",
    "LocalShellRunner",
]
