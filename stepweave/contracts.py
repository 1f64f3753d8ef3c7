"""Core graph contracts for stepweave workflows."""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

if TYPE_CHECKING:
    from .validation import ValidationResult

logger = logging.getLogger(__name__)


class StepKind(str, Enum):
    """Closed set of step kinds the engine knows how to dispatch."""

    DATA_SOURCE = "data-source"
    AI_PROCESSOR = "ai-processor"
    TRANSFORM = "transform"
    DELIVERY = "delivery"


class StepStatus(str, Enum):
    """Display status of a step, updated by the engine during a run."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Position(BaseModel):
    """Canvas position. Carried for round-tripping only."""

    x: float = 0
    y: float = 0


class Step(BaseModel):
    """A node in the workflow graph."""

    id: str
    kind: StepKind
    label: Optional[str] = None
    config: Dict[str, Any] = Field(default_factory=dict)
    position: Position = Field(default_factory=Position)

    # Runtime fields, written by the execution engine only
    status: StepStatus = StepStatus.IDLE
    last_executed_at: Optional[datetime] = None
    execution_time_ms: Optional[float] = None
    error_message: Optional[str] = None


class Connection(BaseModel):
    """Directed dependency edge between two steps."""

    id: str
    source: str
    target: str


class Graph(BaseModel):
    """Validated set of steps and connections."""

    id: Optional[str] = None
    name: str = "Untitled workflow"
    version: str = "1.0"
    steps: List[Step] = Field(default_factory=list)
    connections: List[Connection] = Field(default_factory=list)

    @property
    def step_ids(self) -> List[str]:
        return [step.id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[Step]:
        """Get step by id."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def incoming(self, step_id: str) -> List[Connection]:
        """Connections that target ``step_id``."""
        return [conn for conn in self.connections if conn.target == step_id]

    def predecessors(self, step_id: str) -> List[str]:
        """Distinct source step ids feeding ``step_id``, in connection order."""
        seen: List[str] = []
        for conn in self.incoming(step_id):
            if conn.source not in seen:
                seen.append(conn.source)
        return seen

    def successors(self, step_id: str) -> List[str]:
        """Target step ids of connections leaving ``step_id``."""
        return [conn.target for conn in self.connections if conn.source == step_id]


class StepweaveError(Exception):
    """Base class for stepweave errors."""


class GraphValidationError(StepweaveError):
    """Raised when a candidate graph fails structural validation."""

    def __init__(self, result: "ValidationResult") -> None:
        self.result = result
        super().__init__("; ".join(result.errors) or "Invalid workflow graph")


class SchedulingError(StepweaveError):
    """Raised when no complete execution order exists."""


class StepFailed(StepweaveError):
    """A step could not produce an output. Fatal to the run."""

    def __init__(self, message: str, step_id: Optional[str] = None) -> None:
        self.message = message
        self.step_id = step_id
        super().__init__(message)


class UnknownStepKind(StepFailed):
    """No capability is registered for the step's kind."""


class CapabilityError(StepweaveError):
    """Raised by a capability to report a step failure."""


def load_graph(data: Dict[str, Any], strict_cycles: bool = False) -> Graph:
    """Validate a raw graph mapping and build a :class:`Graph`.

    Raises:
        GraphValidationError: If the mapping has structural errors.
    """
    from .validation import validate_graph

    result = validate_graph(data, strict_cycles=strict_cycles)
    for warning in result.warnings:
        logger.warning(warning)
    if not result.is_valid:
        raise GraphValidationError(result)
    try:
        return Graph.model_validate(data)
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise GraphValidationError(
            result.model_copy(update={"errors": errors})
        ) from e
