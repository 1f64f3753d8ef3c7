"""Graph validation for stepweave workflows."""

from __future__ import annotations

from .configs import CONFIG_CHECKERS, ConfigChecker, check_step_config
from .cycles import detect_cycles
from .graph import (
    ValidationResult,
    validate_connections,
    validate_graph,
    validate_steps,
)

__all__ = [
    "CONFIG_CHECKERS",
    "ConfigChecker",
    "ValidationResult",
    "check_step_config",
    "detect_cycles",
    "validate_connections",
    "validate_graph",
    "validate_steps",
]
