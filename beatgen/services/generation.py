"""
Generation Orchestrator

The unit of work the scheduler runs for a selected template. It owns the
credential/breaker/retry plumbing; the actual provider calls are injected as
ordered GenerationSteps (concept, prompt, music, ...).

Usage:
    orchestrator = GenerationOrchestrator(
        pool=CredentialPool(engine),
        steps=[
            GenerationStep("ConceptService", generate_concept),
            GenerationStep("MusicService", submit_music_job),
        ],
        breakers=CircuitBreakerRegistry(failure_threshold=5, reset_timeout=30.0),
    )
    scheduler = GenerationScheduler(engine, executor=orchestrator)

Each step runs as breaker.call(with_retry(step)) under a breaker named after
the step, so one failing provider never blocks the others.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Sequence

from beatgen.core.circuit_breaker import CircuitBreakerRegistry
from beatgen.core.errors import (
    CredentialRejectedError,
    NoCredentialAvailableError,
    QuotaExceededError,
)
from beatgen.core.logging_config import get_logger
from beatgen.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, SleepFunc, with_retry
from beatgen.services.credential_pool import CredentialPool

# Errors about the credential itself; retrying with the same secret is pointless
CREDENTIAL_ERRORS = (CredentialRejectedError, QuotaExceededError)


@dataclass
class GenerationContext:
    """State shared by the steps of one generation run."""

    template_id: int
    credential_id: int
    secret: str
    results: dict[str, Any] = field(default_factory=dict)
    # Set by a step when the provider reports the authoritative remaining quota
    quota_remaining: Optional[int] = None


@dataclass(frozen=True)
class GenerationStep:
    name: str
    run: Callable[[GenerationContext], Awaitable[Any]]


class GenerationOrchestrator:
    def __init__(
        self,
        pool: CredentialPool,
        steps: Sequence[GenerationStep],
        breakers: Optional[CircuitBreakerRegistry] = None,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        credits_per_run: int = 1,
        logger=None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.pool = pool
        self.steps = list(steps)
        self.breakers = breakers if breakers is not None else CircuitBreakerRegistry()
        self.retry_config = retry_config
        self.credits_per_run = credits_per_run
        self.logger = logger if logger is not None else get_logger(__name__)
        self._sleep = sleep

    async def __call__(self, template_id: int) -> GenerationContext:
        return await self.generate(template_id)

    async def call_provider(self, name: str, operation: Callable[[], Any]) -> Any:
        """Run one downstream call under the named breaker, with retries inside it."""
        breaker = self.breakers.get(name)
        return await breaker.call(
            lambda: with_retry(
                operation,
                self.retry_config,
                context=name,
                log=self.logger,
                sleep=self._sleep,
                abort_on=CREDENTIAL_ERRORS,
            )
        )

    async def generate(self, template_id: int) -> GenerationContext:
        """
        Run every step for a template with one pooled credential.

        Raises:
            NoCredentialAvailableError: the pool has nothing selectable
            CircuitOpenError: a step's breaker is open
            CredentialRejectedError / QuotaExceededError: after the credential
                has been marked error / exhausted
        """
        if not self.pool.has_active():
            raise NoCredentialAvailableError("No active credentials available")

        credential = self.pool.select_next()
        if credential is None:
            raise NoCredentialAvailableError("No active credentials available")

        context = GenerationContext(
            template_id=template_id,
            credential_id=credential.id,
            secret=credential.secret,
        )
        started = time.monotonic()

        try:
            for step in self.steps:
                context.results[step.name] = await self.call_provider(step.name, lambda step=step: step.run(context))
        except CredentialRejectedError:
            self.pool.mark_error(credential.id)
            raise
        except QuotaExceededError:
            self.pool.mark_exhausted(credential.id)
            raise

        if context.quota_remaining is not None:
            remaining = context.quota_remaining
        else:
            remaining = credential.quota_remaining - self.credits_per_run
        self.pool.update_quota(credential.id, remaining)

        self.logger.info(
            "Generation completed",
            template_id=template_id,
            credential_id=credential.id,
            steps=len(self.steps),
            quota_remaining=max(remaining, 0),
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return context
