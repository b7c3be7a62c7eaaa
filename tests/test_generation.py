"""
Tests for the generation orchestrator.

Tests cover:
1. Credential selection and quota bookkeeping
2. Credential errors (rejected, quota exceeded) updating the pool
3. Breaker + retry composition around each step
4. Integration with the scheduler's execution log
"""

import pytest
from unittest.mock import AsyncMock, MagicMock
from sqlmodel import Session

from beatgen.core.circuit_breaker import CircuitBreakerRegistry, CircuitState
from beatgen.core.errors import (
    CircuitOpenError,
    CredentialRejectedError,
    NoCredentialAvailableError,
    QuotaExceededError,
    TransientDownstreamError,
)
from beatgen.core.retry import RetryConfig
from beatgen.core.scheduler import GenerationScheduler
from beatgen.models.credential import CredentialStatus
from beatgen.models.execution_log import ExecutionResult
from beatgen.services.credential_pool import CredentialPool
from beatgen.services.execution_log import list_execution_logs
from beatgen.services.generation import GenerationContext, GenerationOrchestrator, GenerationStep


async def no_sleep(seconds):
    return None


def make_orchestrator(pool, steps, breakers=None, max_attempts=3):
    return GenerationOrchestrator(
        pool=pool,
        steps=steps,
        breakers=breakers if breakers is not None else CircuitBreakerRegistry(failure_threshold=3, reset_timeout=30.0),
        retry_config=RetryConfig(max_attempts=max_attempts),
        sleep=no_sleep,
    )


class TestGenerate:
    @pytest.mark.asyncio
    async def test_runs_steps_in_order_and_decrements_quota(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000001", initial_quota=10)
        order = []

        async def concept(ctx: GenerationContext):
            order.append("concept")
            return {"title": "Night Drive"}

        async def music(ctx: GenerationContext):
            order.append("music")
            assert ctx.results["ConceptService"] == {"title": "Night Drive"}
            assert ctx.secret == "sk-live-gen-000001"
            return "task-123"

        orchestrator = make_orchestrator(
            pool,
            [GenerationStep("ConceptService", concept), GenerationStep("MusicService", music)],
        )

        context = await orchestrator(7)

        assert order == ["concept", "music"]
        assert context.template_id == 7
        assert context.credential_id == credential.id
        assert context.results["MusicService"] == "task-123"
        assert pool.get(credential.id).quota_remaining == 9

    @pytest.mark.asyncio
    async def test_step_reported_quota_is_authoritative(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000002", initial_quota=10)

        async def music(ctx: GenerationContext):
            ctx.quota_remaining = 0
            return "task"

        await make_orchestrator(pool, [GenerationStep("MusicService", music)]).generate(1)

        stored = pool.get(credential.id)
        assert stored.quota_remaining == 0
        assert stored.status == CredentialStatus.EXHAUSTED

    @pytest.mark.asyncio
    async def test_no_active_credentials(self, pool: CredentialPool):
        pool.add("sk-live-gen-000003", initial_quota=0)
        step = AsyncMock()

        with pytest.raises(NoCredentialAvailableError):
            await make_orchestrator(pool, [GenerationStep("MusicService", step)]).generate(1)

        step.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transient_failures_retried_within_step(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000004", initial_quota=5)
        step = AsyncMock(side_effect=[TransientDownstreamError("503"), "ok"])

        context = await make_orchestrator(pool, [GenerationStep("MusicService", step)]).generate(1)

        assert context.results["MusicService"] == "ok"
        assert step.await_count == 2
        assert pool.get(credential.id).quota_remaining == 4

    @pytest.mark.asyncio
    async def test_rejected_credential_marked_error_without_retry(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000005", initial_quota=5)
        step = AsyncMock(side_effect=CredentialRejectedError("revoked", status_code=401))

        with pytest.raises(CredentialRejectedError):
            await make_orchestrator(pool, [GenerationStep("MusicService", step)]).generate(1)

        assert step.await_count == 1
        stored = pool.get(credential.id)
        assert stored.status == CredentialStatus.ERROR
        assert stored.quota_remaining == 5

    @pytest.mark.asyncio
    async def test_quota_exceeded_marks_exhausted(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000006", initial_quota=5)
        step = AsyncMock(side_effect=QuotaExceededError("no credits", status_code=429))

        with pytest.raises(QuotaExceededError):
            await make_orchestrator(pool, [GenerationStep("MusicService", step)]).generate(1)

        stored = pool.get(credential.id)
        assert stored.status == CredentialStatus.EXHAUSTED
        assert stored.quota_remaining == 0

    @pytest.mark.asyncio
    async def test_failed_run_leaves_quota_untouched(self, pool: CredentialPool):
        credential = pool.add("sk-live-gen-000007", initial_quota=5)
        step = AsyncMock(side_effect=TransientDownstreamError("down"))

        with pytest.raises(TransientDownstreamError):
            await make_orchestrator(pool, [GenerationStep("MusicService", step)]).generate(1)

        assert step.await_count == 3
        assert pool.get(credential.id).quota_remaining == 5


class TestBreakerComposition:
    @pytest.mark.asyncio
    async def test_exhausted_retry_counts_as_one_breaker_failure(self, pool: CredentialPool):
        pool.add("sk-live-gen-000008", initial_quota=50)
        breakers = CircuitBreakerRegistry(failure_threshold=3, reset_timeout=30.0)
        step = AsyncMock(side_effect=TransientDownstreamError("down"))
        orchestrator = make_orchestrator(pool, [GenerationStep("MusicService", step)], breakers=breakers)

        with pytest.raises(TransientDownstreamError):
            await orchestrator.generate(1)

        assert step.await_count == 3
        assert breakers.get("MusicService").consecutive_failures == 1

    @pytest.mark.asyncio
    async def test_open_breaker_fails_fast(self, pool: CredentialPool):
        pool.add("sk-live-gen-000009", initial_quota=50)
        breakers = CircuitBreakerRegistry(failure_threshold=2, reset_timeout=30.0)
        step = AsyncMock(side_effect=TransientDownstreamError("down"))
        orchestrator = make_orchestrator(pool, [GenerationStep("MusicService", step)], breakers=breakers, max_attempts=1)

        for _ in range(2):
            with pytest.raises(TransientDownstreamError):
                await orchestrator.generate(1)
        assert breakers.get("MusicService").state == CircuitState.OPEN

        with pytest.raises(CircuitOpenError):
            await orchestrator.generate(1)
        assert step.await_count == 2

    @pytest.mark.asyncio
    async def test_open_breaker_does_not_block_other_steps(self, pool: CredentialPool):
        pool.add("sk-live-gen-000010", initial_quota=50)
        breakers = CircuitBreakerRegistry(failure_threshold=1, reset_timeout=30.0)
        breakers.get("MusicService").record_failure()
        concept = AsyncMock(return_value="concept")
        orchestrator = make_orchestrator(pool, [GenerationStep("ConceptService", concept)], breakers=breakers)

        context = await orchestrator.generate(1)

        assert context.results["ConceptService"] == "concept"

    @pytest.mark.asyncio
    async def test_rejected_credential_counts_toward_breaker(self, pool: CredentialPool):
        pool.add("sk-live-gen-000012", initial_quota=5)
        breakers = CircuitBreakerRegistry(failure_threshold=3, reset_timeout=30.0)
        step = AsyncMock(side_effect=CredentialRejectedError("revoked", status_code=401))
        orchestrator = make_orchestrator(pool, [GenerationStep("MusicService", step)], breakers=breakers)

        with pytest.raises(CredentialRejectedError):
            await orchestrator.generate(1)

        assert breakers.get("MusicService").consecutive_failures == 1


class TestSchedulerIntegration:
    @pytest.mark.asyncio
    async def test_orchestrator_failure_logged_by_scheduler(self, test_engine, pool, sample_templates):
        orchestrator = make_orchestrator(pool, [GenerationStep("MusicService", AsyncMock())])
        scheduler = GenerationScheduler(test_engine, executor=orchestrator)

        result = await scheduler.run_once()

        assert result == ExecutionResult.FAILED
        with Session(test_engine) as session:
            logs = list_execution_logs(session)
        assert logs[0].context["errorMessage"] == "No active credentials available"

    @pytest.mark.asyncio
    async def test_orchestrator_success_logged_by_scheduler(self, test_engine, pool, sample_templates):
        credential = pool.add("sk-live-gen-000011", initial_quota=2)
        orchestrator = make_orchestrator(pool, [GenerationStep("MusicService", AsyncMock(return_value="ok"))])
        scheduler = GenerationScheduler(test_engine, executor=orchestrator)

        assert await scheduler.run_once() == ExecutionResult.SUCCESS
        assert pool.get(credential.id).quota_remaining == 1


class TestWiring:
    def test_keeps_injected_empty_registry(self, pool: CredentialPool):
        callback = MagicMock()
        breakers = CircuitBreakerRegistry(failure_threshold=2, reset_timeout=5.0, on_state_change=callback)

        orchestrator = GenerationOrchestrator(pool, [], breakers=breakers)

        assert orchestrator.breakers is breakers
        breaker = orchestrator.breakers.get("MusicService")
        assert breaker.failure_threshold == 2
        assert breaker.reset_timeout == 5.0
        assert breaker.on_state_change is callback

    def test_default_registry_when_none_given(self, pool: CredentialPool):
        orchestrator = GenerationOrchestrator(pool, [])

        assert isinstance(orchestrator.breakers, CircuitBreakerRegistry)
        assert len(orchestrator.breakers) == 0
