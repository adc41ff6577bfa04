"""Deploy side: credential scope, scoped client and function backends."""

from deployline.deploy.backends import (
    FunctionBackend,
    FunctionBackendError,
    LocalFunctionBackend,
    RecordingFunctionBackend,
)
from deployline.deploy.client import ScopedDeployClient
from deployline.deploy.credentials import (
    CredentialAuthority,
    RevocationList,
    verify_credential,
)

__all__ = [
    "CredentialAuthority",
    "RevocationList",
    "verify_credential",
    "ScopedDeployClient",
    "FunctionBackend",
    "FunctionBackendError",
    "LocalFunctionBackend",
    "RecordingFunctionBackend",
]
