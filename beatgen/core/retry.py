"""
Bounded retry with capped exponential backoff.

Usage:
    from beatgen.core.retry import RetryConfig, with_retry

    credits = await with_retry(
        lambda: client.get_remaining_quota(secret),
        RetryConfig(max_attempts=3),
        context="ProviderClient",
    )

The operation is invoked up to ``max_attempts`` times. Between attempts the
executor sleeps ``min(base_delay * backoff_multiplier ** (attempt - 1), max_delay)``
seconds. When every attempt fails, the exception raised by the final attempt
is re-raised unchanged.
"""

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 8.0  # seconds
    backoff_multiplier: float = 2.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must not be negative")


DEFAULT_RETRY_CONFIG = RetryConfig()


def compute_delay(attempt: int, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> float:
    """Delay in seconds to wait after the given failed attempt (1-based)."""
    return min(config.base_delay * config.backoff_multiplier ** (attempt - 1), config.max_delay)


async def with_retry(
    operation: Callable[[], Any],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    context: Optional[str] = None,
    log: Optional[structlog.stdlib.BoundLogger] = None,
    sleep: SleepFunc = asyncio.sleep,
    abort_on: tuple[type[BaseException], ...] = (),
) -> Any:
    """
    Execute an operation with exponential backoff retry.

    Args:
        operation: Zero-argument callable. May be a coroutine function or a
            plain function; an exception raised synchronously is handled the
            same way as a failed await.
        config: Attempt count and backoff parameters
        context: Label for per-attempt warning logs; no logs when omitted
        log: Logger to write to (defaults to this module's logger)
        sleep: Async sleep function, injectable for tests
        abort_on: Exception types that are re-raised at once without retrying

    Returns:
        Whatever the first successful attempt returned

    Raises:
        The exception from the final attempt when all attempts fail
    """
    log = log if log is not None else logger

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = operation()
            if inspect.isawaitable(result):
                result = await result
            return result
        except abort_on:
            raise
        except Exception as e:
            if context:
                log.warning(
                    f"Retry attempt {attempt}/{config.max_attempts} failed",
                    service=context,
                    error=str(e),
                    error_type=type(e).__name__,
                    attempt=attempt,
                )

            if attempt == config.max_attempts:
                if context and config.max_attempts > 1:
                    log.error(
                        "Retries exhausted",
                        service=context,
                        attempts=config.max_attempts,
                        error=str(e),
                    )
                raise

            await sleep(compute_delay(attempt, config))

    # Unreachable: RetryConfig requires max_attempts >= 1
    raise RuntimeError("with_retry ran zero attempts")
