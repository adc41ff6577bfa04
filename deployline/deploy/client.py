"""The deploy capability handed to the Build Executor.

``ScopedDeployClient`` is the only path from a build to a live function.
It is built from a backend plus one credential and re-checks the
credential on every call: signature, revocation, action and resource.
"""

from __future__ import annotations

import logging

from deployline.core.errors import CredentialScopeError, DeployCallFailedError
from deployline.deploy.backends import FunctionBackend, FunctionBackendError
from deployline.deploy.credentials import RevocationList, verify_credential
from deployline.models.credentials import UPDATE_FUNCTION_CODE, DeployCredential
from deployline.models.results import DeployAck

logger = logging.getLogger(__name__)


class ScopedDeployClient:
    """Update-function-code capability bound to a single credential.

    Parameters
    ----------
    backend:
        Where function code is replaced.
    credential:
        The signed grant for this build identity.
    verify_key_hex:
        The provisioning authority's Ed25519 verify key.
    revocations:
        Shared revocation list; consulted on every call.
    """

    def __init__(
        self,
        backend: FunctionBackend,
        credential: DeployCredential,
        verify_key_hex: str,
        revocations: RevocationList | None = None,
    ) -> None:
        self._backend = backend
        self._credential = credential
        self._verify_key_hex = verify_key_hex
        self._revocations = revocations or RevocationList()

    @property
    def function_identity(self) -> str:
        """The one function this client may update."""
        return self._credential.resource

    @property
    def credential_id(self) -> str:
        return self._credential.credential_id

    def authorize(self, function_identity: str) -> None:
        """Raise ``CredentialScopeError`` unless the call is within scope."""
        cred = self._credential
        if not verify_credential(cred, self._verify_key_hex):
            raise CredentialScopeError(
                f"credential {cred.credential_id} has an invalid signature"
            )
        if self._revocations.is_revoked(cred.credential_id):
            raise CredentialScopeError(f"credential {cred.credential_id} is revoked")
        if not cred.permits(UPDATE_FUNCTION_CODE, function_identity):
            raise CredentialScopeError(
                f"{cred.principal} is not allowed {UPDATE_FUNCTION_CODE} on {function_identity}"
            )

    def update_function_code(
        self, function_identity: str, artifact_location: str, code: bytes
    ) -> DeployAck:
        self.authorize(function_identity)
        logger.info(
            "Updating %s with %s as %s",
            function_identity,
            artifact_location,
            self._credential.principal,
        )
        try:
            return self._backend.update_function_code(function_identity, artifact_location, code)
        except FunctionBackendError as exc:
            raise DeployCallFailedError(str(exc)) from exc
