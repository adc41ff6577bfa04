"""``deployline grant`` / ``deployline revoke`` — manage deploy credentials.

``grant`` provisions the authority signing key on first use and writes a
credential allowing one principal to update one function's code.
``revoke`` adds a credential id to the shared revocation list; queued
and future executions holding it can no longer deploy.
"""

from __future__ import annotations

import os
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel

from deployline.config import config
from deployline.deploy.credentials import CredentialAuthority, RevocationList
from deployline.models.credentials import DeployCredential

console = Console()

_AUTHORITY_KEY_FILE = "authority.key"


# ---------------------------------------------------------------------------
# Key material on disk
# ---------------------------------------------------------------------------


def load_authority(keys_dir: Path, *, create: bool = False) -> CredentialAuthority | None:
    """Load the signing key from *keys_dir*; generate it when *create* is set."""
    key_file = keys_dir / _AUTHORITY_KEY_FILE
    if key_file.exists():
        return CredentialAuthority(key_file.read_text(encoding="utf-8").strip())
    if not create:
        return None
    authority = CredentialAuthority()
    keys_dir.mkdir(parents=True, exist_ok=True)
    key_file.write_text(authority.signing_key_hex, encoding="utf-8")
    os.chmod(key_file, 0o600)
    return authority


def credential_path(keys_dir: Path, function_identity: str) -> Path:
    safe = function_identity.replace("/", "_").replace(":", "_")
    return keys_dir / f"{safe}.credential.json"


def load_credential(keys_dir: Path, function_identity: str) -> DeployCredential | None:
    path = credential_path(keys_dir, function_identity)
    if not path.exists():
        return None
    return DeployCredential.model_validate_json(path.read_text(encoding="utf-8"))


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def grant_cmd(
    function: str = typer.Argument(..., help="Function identity the credential may update."),
    principal: str = typer.Option(
        "build",
        "--principal",
        "-p",
        help="Runtime identity of the build executor.",
    ),
    keys_dir: Path = typer.Option(
        config.keys_path,
        "--keys",
        "-k",
        help="Directory holding the authority key and credentials.",
    ),
) -> None:
    """Issue an UpdateFunctionCode credential for exactly one function."""
    authority = load_authority(keys_dir, create=True)
    assert authority is not None
    credential = authority.grant(principal, function)
    path = credential_path(keys_dir, function)
    path.write_text(credential.model_dump_json(indent=2), encoding="utf-8")

    console.print(
        Panel(
            f"[bold]Credential:[/bold] [cyan]{credential.credential_id}[/cyan]\n"
            f"[bold]Principal:[/bold] {credential.principal}\n"
            f"[bold]Action:[/bold] {credential.action}\n"
            f"[bold]Resource:[/bold] {credential.resource}\n"
            f"[bold]Verify key:[/bold] {authority.verify_key_hex[:16]}...\n"
            f"[dim]Written to {path}[/dim]",
            title="[bold green]Credential granted[/bold green]",
            border_style="green",
        )
    )


def revoke_cmd(
    credential_id: str = typer.Argument(..., help="The credential id to revoke."),
    revocations_file: Path = typer.Option(
        config.revocations_path,
        "--revocations",
        "-r",
        help="Path to the revocation list.",
    ),
) -> None:
    """Revoke a deploy credential for every pipeline that holds it."""
    revocations = RevocationList(revocations_file)
    if revocations.is_revoked(credential_id):
        console.print(f"[yellow]{credential_id} is already revoked.[/yellow]")
        raise typer.Exit(code=0)
    revocations.revoke(credential_id)
    console.print(f"[bold red]Revoked[/bold red] {credential_id}")
