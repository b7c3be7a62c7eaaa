"""
HTTP client for the generation provider's account endpoints.

Only the credit (quota) lookup lives here; generation calls are made by the
pipeline steps. HTTP failures are mapped onto the error taxonomy so callers
can tell retryable failures from credential problems:

    401 / 403            -> CredentialRejectedError
    429                  -> QuotaExceededError
    5xx, timeouts, I/O   -> TransientDownstreamError
    body code != 200     -> ProviderError
"""

from typing import Any, Optional

import httpx

from beatgen.core.errors import (
    CredentialRejectedError,
    ProviderError,
    QuotaExceededError,
    TransientDownstreamError,
)
from beatgen.core.logging_config import get_logger
from beatgen.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry
from beatgen.models.credential import Credential, CredentialStatus
from beatgen.services.credential_pool import CredentialPool

CREDITS_PATH = "/api/v1/get-credits"


class ProviderClient:
    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger=None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport
        self.logger = logger if logger is not None else get_logger(__name__)

    def _client(self, secret: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {secret}",
                "Accept": "application/json",
            },
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        status = response.status_code
        if status in (401, 403):
            raise CredentialRejectedError(f"Provider rejected credential (HTTP {status})", status_code=status)
        if status == 429:
            raise QuotaExceededError("Provider quota exceeded (HTTP 429)", status_code=status)
        if status >= 500:
            raise TransientDownstreamError(f"Provider unavailable (HTTP {status})")
        if status >= 400:
            raise ProviderError(f"Provider request failed (HTTP {status})", status_code=status)

    async def _get_json(self, secret: str, path: str) -> dict[str, Any]:
        try:
            async with self._client(secret) as client:
                response = await client.get(path)
        except httpx.TransportError as e:
            raise TransientDownstreamError(f"Provider request failed: {type(e).__name__}: {e}") from e

        self._raise_for_status(response)

        try:
            payload = response.json()
        except ValueError as e:
            raise ProviderError("Provider returned invalid JSON", status_code=response.status_code) from e

        if payload.get("code") != 200:
            raise ProviderError(payload.get("msg") or "Provider error", status_code=payload.get("code"))
        return payload

    async def get_remaining_quota(self, secret: str) -> int:
        """Return the credits the provider reports for this secret."""
        payload = await self._get_json(secret, CREDITS_PATH)
        data = payload.get("data")
        credits = data.get("credits") if isinstance(data, dict) else data
        try:
            return int(credits)
        except (TypeError, ValueError) as e:
            raise ProviderError(f"Unexpected credits payload: {data!r}") from e


async def refresh_pool_quotas(
    pool: CredentialPool,
    client: ProviderClient,
    retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
) -> dict[str, int]:
    """
    Refresh every non-errored credential's quota from the provider.

    Rejected credentials are marked as error and over-quota ones exhausted.
    Failures that survive retries leave the credential untouched.

    Returns:
        Counts: {"refreshed", "rejected", "exhausted", "failed"}
    """
    summary = {"refreshed": 0, "rejected": 0, "exhausted": 0, "failed": 0}

    credentials: list[Credential] = [c for c in pool.list_all() if c.status != CredentialStatus.ERROR]
    for credential in credentials:
        try:
            quota = await with_retry(
                lambda: client.get_remaining_quota(credential.secret),
                retry_config,
                context="ProviderClient",
                abort_on=(CredentialRejectedError, QuotaExceededError),
            )
        except CredentialRejectedError:
            pool.mark_error(credential.id)
            summary["rejected"] += 1
            continue
        except QuotaExceededError:
            pool.mark_exhausted(credential.id)
            summary["exhausted"] += 1
            continue
        except (TransientDownstreamError, ProviderError) as e:
            client.logger.warning("Quota refresh failed", credential_id=credential.id, error=str(e))
            summary["failed"] += 1
            continue

        pool.refresh(credential.id, quota)
        summary["refreshed"] += 1

    return summary
