"""
SQLModel model for the execution log.

Every scheduler firing (success, failure or skip) appends exactly one row.
Rows are never updated.

Example:
    entry = ExecutionLogEntry(
        level="INFO",
        service="Scheduler",
        message="Scheduled generation success",
        context={
            "templateId": 12,
            "result": "success",
            "errorMessage": None,
            "executionTimeMs": 48211,
            "timestamp": "2024-01-01T12:00:00+00:00",
        },
    )
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import JSON

from beatgen.core.typing import utc_now

__all__ = [
    "ExecutionLogEntry",
    "ExecutionResult",
]


class ExecutionResult(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def level(self) -> str:
        return {
            ExecutionResult.SUCCESS: "INFO",
            ExecutionResult.FAILED: "ERROR",
            ExecutionResult.SKIPPED: "WARN",
        }[self]


class ExecutionLogEntry(SQLModel, table=True):
    __tablename__ = "execution_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    level: str = Field(max_length=10, index=True)
    service: str = Field(max_length=100, index=True)
    message: str = Field(max_length=500)
    context: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
        description="templateId, result, errorMessage, executionTimeMs, timestamp",
    )
    created_at: datetime = Field(default_factory=utc_now, nullable=False, index=True)

    @property
    def result(self) -> Optional[str]:
        return self.context.get("result")
