"""Deployline CLI — Typer-based command-line interface.

Provides the ``deployline`` command with subcommands for running the
pipeline, reading execution history, and granting or revoking deploy
credentials.

All output uses Rich for formatted terminal display.
"""
