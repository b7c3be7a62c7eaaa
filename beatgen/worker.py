"""
Process bootstrap for the scheduler worker.

Wires settings into the resilience core (credential pool, breaker registry,
retry config, orchestrator, scheduler), starts the timer, and on SIGINT/SIGTERM
stops it and lets the in-flight run finish before exiting.
"""

import asyncio
import importlib
import signal
from datetime import timedelta
from typing import Callable, Optional, Sequence

from sqlalchemy.engine import Engine

from beatgen.core.circuit_breaker import CircuitBreakerRegistry
from beatgen.core.config import Settings, settings as default_settings
from beatgen.core.error_tracking import capture_message, init_sentry
from beatgen.core.logging_config import get_logger
from beatgen.core.scheduler import GenerationScheduler
from beatgen.services.credential_pool import CredentialPool
from beatgen.services.generation import GenerationOrchestrator, GenerationStep

logger = get_logger(__name__)


def _notify_state_change(name: str, old_state: str, new_state: str) -> None:
    if new_state == "open":
        capture_message(f"Circuit {name} opened", level="warning", context={"circuit": name, "from": old_state})


def build_scheduler(
    steps: Sequence[GenerationStep],
    engine: Engine,
    config: Settings = default_settings,
) -> GenerationScheduler:
    """Assemble the scheduler and its unit of work from configuration."""
    pool = CredentialPool(engine, logger=get_logger("beatgen.credential_pool"))
    breakers = CircuitBreakerRegistry(
        failure_threshold=config.CIRCUIT_FAILURE_THRESHOLD,
        reset_timeout=config.CIRCUIT_RESET_TIMEOUT_SECONDS,
        on_state_change=_notify_state_change,
        logger=get_logger("beatgen.circuit_breaker"),
    )
    orchestrator = GenerationOrchestrator(
        pool=pool,
        steps=steps,
        breakers=breakers,
        retry_config=config.retry_config(),
        logger=get_logger("beatgen.generation"),
    )
    return GenerationScheduler(
        engine,
        executor=orchestrator,
        interval_minutes=config.SCHEDULER_INTERVAL_MINUTES,
        reuse_window=timedelta(hours=config.TEMPLATE_REUSE_WINDOW_HOURS),
        logger=get_logger("beatgen.scheduler"),
    )


def load_steps(path: str) -> list[GenerationStep]:
    """
    Import a step factory given as "package.module:callable".

    The callable takes no arguments and returns the ordered GenerationSteps.
    """
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"Expected 'module:callable', got {path!r}")
    factory: Callable[[], Sequence[GenerationStep]] = getattr(importlib.import_module(module_name), attr)
    return list(factory())


async def run_worker(
    steps: Sequence[GenerationStep],
    engine: Engine,
    config: Settings = default_settings,
    stop_event: Optional[asyncio.Event] = None,
) -> None:
    init_sentry(config.SENTRY_DSN, environment=config.ENVIRONMENT)

    scheduler = build_scheduler(steps, engine, config)
    stop_event = stop_event if stop_event is not None else asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on this platform/thread; rely on cancellation
            pass

    logger.info("Starting dedicated scheduler worker...")
    scheduler.start()
    try:
        await stop_event.wait()
    finally:
        scheduler.stop()
        await scheduler.wait_until_idle()
        scheduler.shutdown()
        logger.info("Scheduler worker shut down")
