"""Routing of steps to the capability registered for their kind."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Protocol, runtime_checkable

from .contracts import CapabilityError, Step, StepFailed, StepKind, UnknownStepKind
from .persistence.models import utcnow

logger = logging.getLogger(__name__)


@runtime_checkable
class Capability(Protocol):
    """Executor behind one step kind."""

    async def execute(self, config: Dict[str, Any], input_data: Any) -> Any:
        """Run the step and return its output.

        Raises:
            CapabilityError: (or any exception) to report a step failure.
        """
        ...


class CapabilityRegistry:
    """Maps each :class:`StepKind` to its capability implementation."""

    def __init__(self, capabilities: Optional[Dict[StepKind, Capability]] = None):
        self._capabilities: Dict[StepKind, Capability] = {}
        for kind, capability in (capabilities or {}).items():
            self.register(kind, capability)

    def register(self, kind: StepKind | str, capability: Capability) -> None:
        """Register ``capability`` for ``kind``. Unknown kinds are rejected."""
        try:
            kind = StepKind(kind)
        except ValueError:
            raise ValueError(f"Unknown step kind: {kind}") from None
        if not isinstance(capability, Capability):
            raise TypeError(
                f"Capability for {kind.value} must define an async execute() method"
            )
        self._capabilities[kind] = capability

    def get(self, kind: StepKind | str) -> Capability | None:
        try:
            return self._capabilities.get(StepKind(kind))
        except ValueError:
            return None

    def kinds(self) -> list[StepKind]:
        return list(self._capabilities)

    def missing_kinds(self) -> list[StepKind]:
        return [kind for kind in StepKind if kind not in self._capabilities]

    def capabilities(self) -> Iterable[Capability]:
        return self._capabilities.values()


@dataclass
class DispatchOutcome:
    """Output and timing of one capability call."""

    output: Any
    started_at: datetime
    completed_at: datetime
    duration_ms: float


class StepDispatcher:
    """Pure routing plus timing. Holds no business logic of its own."""

    def __init__(self, registry: CapabilityRegistry) -> None:
        self._registry = registry

    async def dispatch(self, step: Step, input_data: Any) -> DispatchOutcome:
        """Execute ``step`` through its capability.

        Raises:
            UnknownStepKind: If no capability handles the step's kind.
            StepFailed: If the capability raises for any reason.
        """
        capability = self._registry.get(step.kind)
        if capability is None:
            raise UnknownStepKind(
                f"No capability registered for step kind: {getattr(step.kind, 'value', step.kind)}",
                step_id=step.id,
            )

        started_at = utcnow()
        start = time.perf_counter()
        logger.debug(f"Dispatching step {step.id} ({step.kind.value})")
        try:
            output = await capability.execute(step.config, input_data)
        except (asyncio.TimeoutError, TimeoutError) as e:
            detail = str(e) or "operation exceeded its configured timeout"
            raise StepFailed(f"Step {step.id} timed out: {detail}", step_id=step.id) from e
        except CapabilityError as e:
            raise StepFailed(str(e), step_id=step.id) from e
        except Exception as e:
            logger.exception(f"Capability for step {step.id} raised unexpectedly")
            raise StepFailed(str(e) or type(e).__name__, step_id=step.id) from e

        duration_ms = (time.perf_counter() - start) * 1000
        return DispatchOutcome(
            output=output,
            started_at=started_at,
            completed_at=utcnow(),
            duration_ms=duration_ms,
        )
