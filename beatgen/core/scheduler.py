"""
Single-flight generation scheduler.

An APScheduler interval job fires run_once() every SCHEDULER_INTERVAL_MINUTES.
run_once() holds an IDLE/FIRING guard: a firing that arrives while another run
is in flight is skipped (and logged), never queued. Each firing picks a work
template that has not been used within the reuse window, hands its id to the
injected unit-of-work executor, and appends exactly one execution-log row.

Usage:
    scheduler = GenerationScheduler(engine, executor=orchestrator)
    scheduler.start()
    ...
    scheduler.stop()  # in-flight run finishes and still logs
"""

import asyncio
import random
import time
import uuid
from datetime import timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import or_
from sqlalchemy.engine import Engine
from sqlmodel import Session, select

from beatgen.core.error_tracking import capture_exception
from beatgen.core.logging_config import get_logger
from beatgen.core.typing import col, utc_now
from beatgen.models.execution_log import ExecutionResult
from beatgen.models.work_template import WorkTemplate
from beatgen.services.execution_log import record_execution

# Unit of work: receives the selected template id
UnitOfWork = Callable[[int], Awaitable[Any]]

JOB_ID = "job_generate_from_template"


class SchedulerState(Enum):
    IDLE = "idle"
    FIRING = "firing"


class GenerationScheduler:
    def __init__(
        self,
        engine: Engine,
        executor: UnitOfWork,
        interval_minutes: int = 15,
        reuse_window: timedelta = timedelta(hours=24),
        logger=None,
        scheduler: Optional[AsyncIOScheduler] = None,
        rng: Optional[random.Random] = None,
    ):
        self.engine = engine
        self.executor = executor
        self.interval_minutes = interval_minutes
        self.reuse_window = reuse_window
        self.logger = logger if logger is not None else get_logger(__name__)
        self._scheduler = scheduler if scheduler is not None else AsyncIOScheduler()
        self._rng = rng if rng is not None else random.Random()
        self._job = None
        self._state = SchedulerState.IDLE

    @property
    def state(self) -> SchedulerState:
        return self._state

    def start(self) -> None:
        """Register the interval job and start the timer. Idempotent."""
        if self._job is not None:
            self.logger.warning("Scheduler is already running")
            return

        # Job config:
        # - max_instances=2: overlap is refused by the FIRING guard so the
        #   skipped tick still gets an execution-log row
        # - coalesce=True: collapse missed ticks into one
        # - misfire_grace_time: run late ticks within half an interval
        self._job = self._scheduler.add_job(
            self.run_once,
            IntervalTrigger(minutes=self.interval_minutes),
            id=JOB_ID,
            name="Scheduled generation",
            max_instances=2,
            coalesce=True,
            misfire_grace_time=max(self.interval_minutes * 30, 1),
            replace_existing=True,
        )
        if not self._scheduler.running:
            self._scheduler.start()

        self.logger.info("Scheduler started", interval_minutes=self.interval_minutes)

    def stop(self) -> None:
        """Cancel the timer. A run already in flight is not interrupted."""
        if self._job is None:
            return
        self._job.remove()
        self._job = None
        self.logger.info("Scheduler stopped")

    def shutdown(self) -> None:
        """Stop the timer and the underlying APScheduler instance."""
        self.stop()
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def is_running(self) -> bool:
        """True while a run is in flight."""
        return self._state == SchedulerState.FIRING

    def get_status(self) -> dict[str, bool]:
        return {
            "is_scheduler_active": self._job is not None,
            "is_job_running": self.is_running(),
        }

    async def wait_until_idle(self, poll_interval: float = 0.1) -> None:
        while self._state == SchedulerState.FIRING:
            await asyncio.sleep(poll_interval)

    async def trigger_manual(self) -> ExecutionResult:
        """Run one firing now, outside the timer, under the same guard."""
        return await self.run_once()

    async def run_once(self) -> ExecutionResult:
        started = time.monotonic()

        # Check-and-set happens before the first await
        if self._state == SchedulerState.FIRING:
            self.logger.info("Skipping scheduled job - previous job still running")
            return self._record(ExecutionResult.SKIPPED, None, started, "Previous job still running")

        self._state = SchedulerState.FIRING
        template_id: Optional[int] = None
        try:
            with structlog.contextvars.bound_contextvars(run_id=uuid.uuid4().hex[:12]):
                try:
                    template = self.select_template()
                    if template is None:
                        self.logger.warning("No active templates - skipping run")
                        return self._record(ExecutionResult.SKIPPED, None, started, "No active templates")

                    template_id = template.id
                    self.logger.info("Template selected", template_id=template_id, category=template.category_name)

                    await self.executor(template_id)
                    self._stamp_template(template_id)
                except Exception as e:
                    capture_exception(
                        e,
                        context={"operation": "scheduled_generation", "template_id": template_id},
                    )
                    return self._record(ExecutionResult.FAILED, template_id, started, str(e) or type(e).__name__)

                result = self._record(ExecutionResult.SUCCESS, template_id, started)
                self.logger.info("Scheduled generation completed", template_id=template_id)
                return result
        finally:
            self._state = SchedulerState.IDLE

    def select_template(self) -> Optional[WorkTemplate]:
        """
        Pick a template for the next run.

        Uniform-random among active templates unused within the reuse window;
        if every active template was used recently, uniform-random among all
        active templates. None only when no template is active.
        """
        cutoff = utc_now() - self.reuse_window

        with Session(self.engine) as session:
            eligible = session.exec(
                select(WorkTemplate).where(
                    col(WorkTemplate.is_active).is_(True),
                    or_(
                        col(WorkTemplate.last_used_at).is_(None),
                        col(WorkTemplate.last_used_at) < cutoff,
                    ),
                )
            ).all()
            if eligible:
                return self._rng.choice(list(eligible))

            active = session.exec(select(WorkTemplate).where(col(WorkTemplate.is_active).is_(True))).all()
            if not active:
                return None

            self.logger.info("All templates used within reuse window - selecting from all active templates")
            return self._rng.choice(list(active))

    def _stamp_template(self, template_id: int) -> None:
        with Session(self.engine) as session:
            template = session.get(WorkTemplate, template_id)
            if template is None:
                return
            template.last_used_at = utc_now()
            session.add(template)
            session.commit()

    @staticmethod
    def _elapsed_ms(started: float) -> int:
        return int((time.monotonic() - started) * 1000)

    def _record(
        self,
        result: ExecutionResult,
        template_id: Optional[int],
        started: float,
        error_message: Optional[str] = None,
    ) -> ExecutionResult:
        with Session(self.engine) as session:
            record_execution(
                session,
                result=result,
                template_id=template_id,
                execution_time_ms=self._elapsed_ms(started),
                error_message=error_message,
            )
        return result
