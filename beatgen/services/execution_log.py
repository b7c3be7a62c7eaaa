"""
Execution Log Service

Append-only sink for scheduler outcomes. One row per firing attempt.

Usage:
    from beatgen.services.execution_log import record_execution, list_execution_logs

    with Session(engine) as session:
        record_execution(
            session,
            result=ExecutionResult.SUCCESS,
            template_id=12,
            execution_time_ms=48211,
        )
"""

from typing import Any, Optional

from sqlmodel import Session, select

from beatgen.core.typing import col, utc_now
from beatgen.models.execution_log import ExecutionLogEntry, ExecutionResult

SCHEDULER_SERVICE = "Scheduler"


def append_execution_log(
    session: Session,
    level: str,
    service: str,
    message: str,
    context: Optional[dict[str, Any]] = None,
) -> ExecutionLogEntry:
    entry = ExecutionLogEntry(
        level=level,
        service=service,
        message=message,
        context=context or {},
    )
    session.add(entry)
    session.commit()
    session.refresh(entry)
    return entry


def record_execution(
    session: Session,
    result: ExecutionResult,
    template_id: Optional[int],
    execution_time_ms: int,
    error_message: Optional[str] = None,
    service: str = SCHEDULER_SERVICE,
) -> ExecutionLogEntry:
    """
    Append the log entry for one scheduler firing.

    Args:
        session: Database session
        result: success, failed or skipped
        template_id: Template the run used, None when nothing was selected
        execution_time_ms: Wall time of the attempt in milliseconds
        error_message: Failure or skip reason

    Returns:
        The stored ExecutionLogEntry
    """
    if error_message and len(error_message) > 1000:
        error_message = error_message[:1000]  # Truncate long errors

    return append_execution_log(
        session,
        level=result.level,
        service=service,
        message=f"Scheduled generation {result.value}",
        context={
            "templateId": template_id,
            "result": result.value,
            "errorMessage": error_message,
            "executionTimeMs": execution_time_ms,
            "timestamp": utc_now().isoformat(),
        },
    )


def list_execution_logs(
    session: Session,
    service: Optional[str] = None,
    limit: int = 100,
) -> list[ExecutionLogEntry]:
    """Most recent entries first."""
    stmt = select(ExecutionLogEntry)
    if service:
        stmt = stmt.where(col(ExecutionLogEntry.service) == service)
    stmt = stmt.order_by(col(ExecutionLogEntry.created_at).desc(), col(ExecutionLogEntry.id).desc()).limit(limit)
    return list(session.exec(stmt).all())
