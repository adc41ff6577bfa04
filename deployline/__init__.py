"""Deployline: commit-triggered build and deploy pipeline for one function.

A commit to the watched repository becomes an immutable source artifact;
the Build stage runs the buildspec phases (install, build, post_build)
against it with a shared build cache, and the final phase deploys the
packaged output through a credential that can update exactly one
function's code. Stages run strictly in order, nothing is retried, and
every transition is recorded in the Run Ledger.
"""

__version__ = "0.1.0"
__description__ = "Commit-triggered build and single-function deploy pipeline"

from deployline.core.controller import DuplicateTriggerError, PipelineController
from deployline.core.dispatcher import TriggerDispatcher
from deployline.cli.app import app as cli

__all__ = [
    "PipelineController",
    "DuplicateTriggerError",
    "TriggerDispatcher",
    "cli",
    "__version__",
]
