"""stepweave: validate and execute visual data workflows."""

from .capabilities import build_registry
from .config import StepweaveConfig, load_config
from .contracts import (
    CapabilityError,
    Connection,
    Graph,
    GraphValidationError,
    SchedulingError,
    Step,
    StepFailed,
    StepKind,
    StepStatus,
    StepweaveError,
    UnknownStepKind,
    load_graph,
)
from .dispatch import CapabilityRegistry, StepDispatcher
from .execute import ExecutionEngine
from .persistence import ExecutionRun, RunStatus, StepExecution, get_repository
from .schedule import execution_order
from .validation import ValidationResult, validate_graph

__version__ = "0.1.0"
__all__ = [
    "CapabilityError",
    "CapabilityRegistry",
    "Connection",
    "ExecutionEngine",
    "ExecutionRun",
    "Graph",
    "GraphValidationError",
    "RunStatus",
    "SchedulingError",
    "Step",
    "StepDispatcher",
    "StepExecution",
    "StepFailed",
    "StepKind",
    "StepStatus",
    "StepweaveConfig",
    "StepweaveError",
    "UnknownStepKind",
    "ValidationResult",
    "build_registry",
    "execution_order",
    "get_repository",
    "load_config",
    "load_graph",
    "validate_graph",
]
