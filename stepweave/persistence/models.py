"""Data models for the run ledger."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from ..contracts import StepKind


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELLED = "cancelled"


class StepExecutionStatus(str, Enum):
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


TERMINAL_RUN_STATUSES = frozenset(
    {RunStatus.COMPLETED, RunStatus.ERROR, RunStatus.CANCELLED}
)


class ExecutionRun(BaseModel):
    """One invocation of the engine against a graph."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    workflow_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    input_data: Any = None
    output_data: Any = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[float] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_finished(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class StepExecution(BaseModel):
    """Record of one step dispatched within a run."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    run_id: str
    step_id: str
    step_kind: StepKind
    sequence: int = 0
    status: StepExecutionStatus = StepExecutionStatus.RUNNING
    input_data: Any = None
    output_data: Any = None
    error_message: Optional[str] = None
    execution_time_ms: Optional[float] = None
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
