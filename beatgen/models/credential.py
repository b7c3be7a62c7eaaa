"""
Provider credential model for the credential pool.
"""

from enum import Enum
from typing import Optional
from sqlmodel import Field, SQLModel
from datetime import datetime

from beatgen.core.typing import utc_now


class CredentialStatus(str, Enum):
    """Lifecycle status of a provider credential."""

    ACTIVE = "active"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class Credential(SQLModel, table=True):
    """Quota-limited secret for a downstream generation provider.

    quota_remaining == 0 always goes together with status == exhausted; the
    credential pool enforces this on every quota write.
    """

    id: Optional[int] = Field(default=None, primary_key=True)

    secret: str = Field(index=True, unique=True)
    status: CredentialStatus = Field(default=CredentialStatus.ACTIVE, index=True)

    # Usage tracking
    quota_remaining: int = Field(default=0, ge=0)
    last_used_at: Optional[datetime] = Field(default=None, index=True)

    created_at: datetime = Field(default_factory=utc_now)

    @property
    def is_selectable(self) -> bool:
        return self.status == CredentialStatus.ACTIVE and self.quota_remaining > 0

    def mask(self) -> str:
        """Render the secret for logs without exposing it."""
        return self.mask_secret(self.secret)

    @staticmethod
    def mask_secret(secret: str) -> str:
        if len(secret) <= 12:
            return secret[:4] + "..."
        return f"{secret[:8]}...{secret[-4:]}"
