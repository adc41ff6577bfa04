"""Deploy credential model: one action on one function, signed at grant time."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

UPDATE_FUNCTION_CODE = "function:UpdateFunctionCode"


class DeployCredential(BaseModel):
    """A least-privilege grant bound to the build identity.

    The model is frozen and carries no way to add actions or resources.
    Anything broader needs a new grant from the ``CredentialAuthority``,
    which signs it and leaves an auditable record.
    """

    model_config = ConfigDict(frozen=True)

    credential_id: str = Field(default_factory=lambda: f"cred-{uuid.uuid4().hex[:12]}")
    principal: str  # the build executor's runtime identity
    action: str = UPDATE_FUNCTION_CODE
    resource: str  # the deployed function's identity
    granted_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )
    issuer_key: str = ""  # Ed25519 verify key (hex) of the authority
    signature: str = ""  # hex, over signing_payload()

    def signing_payload(self) -> dict[str, Any]:
        """Fields covered by the signature."""
        return self.model_dump(mode="json", exclude={"signature"})

    def permits(self, action: str, resource: str) -> bool:
        return action == self.action and resource == self.resource
