"""
Exceptions raised by the resilience core.

    BeatgenError
    ├── TransientDownstreamError   retryable provider failure (5xx, timeouts, I/O)
    ├── ProviderError              provider answered but refused the request
    │   ├── CredentialRejectedError    401/403, the secret is no good
    │   └── QuotaExceededError         429, the secret has no credits left
    ├── CircuitOpenError           breaker refused the call without running it
    ├── DuplicateCredentialError
    ├── CredentialNotFoundError    also a KeyError
    └── NoCredentialAvailableError
"""

from typing import Optional

__all__ = [
    "BeatgenError",
    "TransientDownstreamError",
    "ProviderError",
    "CredentialRejectedError",
    "QuotaExceededError",
    "CircuitOpenError",
    "DuplicateCredentialError",
    "CredentialNotFoundError",
    "NoCredentialAvailableError",
]


class BeatgenError(Exception):
    pass


class TransientDownstreamError(BeatgenError):
    """A downstream call failed in a way that may succeed on retry."""


class ProviderError(BeatgenError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CredentialRejectedError(ProviderError):
    """The provider refused the credential (revoked, invalid, banned)."""


class QuotaExceededError(ProviderError):
    pass


class CircuitOpenError(BeatgenError):
    def __init__(self, name: str):
        super().__init__(f"Circuit breaker is OPEN for {name}")
        self.name = name


class DuplicateCredentialError(BeatgenError):
    pass


class CredentialNotFoundError(BeatgenError, KeyError):
    def __init__(self, credential_id: int):
        super().__init__(credential_id)
        self.credential_id = credential_id

    def __str__(self) -> str:
        # KeyError would repr() the id
        return f"Credential not found: {self.credential_id}"


class NoCredentialAvailableError(BeatgenError):
    """No active credential with remaining quota exists."""
