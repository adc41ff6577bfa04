"""Credential scope: provision, verify and revoke deploy credentials.

A ``CredentialAuthority`` is used once, at provisioning time, to sign a
``DeployCredential`` granting one principal one action on one function.
The build side only ever holds the credential and the authority's verify
key; it has no way to mint or widen grants.

Signatures are Ed25519 via PyNaCl over the canonical JSON of the
credential (everything but the signature itself).
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path

import nacl.exceptions
import nacl.signing

from deployline.core.hasher import canonical_json_bytes
from deployline.models.credentials import UPDATE_FUNCTION_CODE, DeployCredential

logger = logging.getLogger(__name__)


class CredentialAuthority:
    """Issues signed, single-purpose deploy credentials.

    Parameters
    ----------
    signing_key_hex:
        Hex-encoded Ed25519 seed. A fresh key is generated when omitted.
    """

    def __init__(self, signing_key_hex: str | None = None) -> None:
        if signing_key_hex:
            self._signing_key = nacl.signing.SigningKey(bytes.fromhex(signing_key_hex))
        else:
            self._signing_key = nacl.signing.SigningKey.generate()

    @property
    def signing_key_hex(self) -> str:
        return bytes(self._signing_key).hex()

    @property
    def verify_key_hex(self) -> str:
        return bytes(self._signing_key.verify_key).hex()

    def grant(self, principal: str, function_identity: str) -> DeployCredential:
        """Grant *principal* ``UpdateFunctionCode`` on *function_identity* only."""
        unsigned = DeployCredential(
            principal=principal,
            action=UPDATE_FUNCTION_CODE,
            resource=function_identity,
            issuer_key=self.verify_key_hex,
        )
        signed = self._signing_key.sign(canonical_json_bytes(unsigned.signing_payload()))
        credential = unsigned.model_copy(update={"signature": signed.signature.hex()})
        logger.info(
            "Granted %s to %s on %s (credential %s)",
            credential.action,
            principal,
            function_identity,
            credential.credential_id,
        )
        return credential


def verify_credential(credential: DeployCredential, verify_key_hex: str) -> bool:
    """Return True if *credential* was signed by the holder of *verify_key_hex*.

    The credential's embedded ``issuer_key`` must also match, so a
    credential re-signed by some other key is rejected.
    """
    if not credential.signature or credential.issuer_key != verify_key_hex:
        return False
    try:
        verify_key = nacl.signing.VerifyKey(bytes.fromhex(verify_key_hex))
        verify_key.verify(
            canonical_json_bytes(credential.signing_payload()),
            bytes.fromhex(credential.signature),
        )
    except (nacl.exceptions.BadSignatureError, ValueError):
        return False
    return True


class RevocationList:
    """Credential ids that must no longer be honoured.

    Revocation is independent of any pipeline: an operator can revoke a
    credential while executions are queued, and the next deploy attempt
    is refused.

    Parameters
    ----------
    path:
        Optional JSON file to persist revocations in.
    """

    def __init__(self, path: Path | None = None) -> None:
        self._path = Path(path) if path else None
        self._lock = threading.Lock()
        self._revoked: set[str] = set()
        if self._path and self._path.exists():
            self._revoked = set(json.loads(self._path.read_text(encoding="utf-8")))

    def revoke(self, credential_id: str) -> None:
        with self._lock:
            self._revoked.add(credential_id)
            if self._path:
                self._path.parent.mkdir(parents=True, exist_ok=True)
                self._path.write_text(json.dumps(sorted(self._revoked)), encoding="utf-8")
        logger.warning("Revoked deploy credential %s", credential_id)

    def is_revoked(self, credential_id: str) -> bool:
        with self._lock:
            if self._path and self._path.exists():
                self._revoked = set(json.loads(self._path.read_text(encoding="utf-8")))
            return credential_id in self._revoked
