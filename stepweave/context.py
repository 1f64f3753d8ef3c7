"""Per-run execution state: step states, recorded outputs and carried data."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, List, Optional

from .contracts import Graph, StepweaveError

logger = logging.getLogger(__name__)


class StepState(str, Enum):
    """Lifecycle of a step within one run.

    Transition graph::

        PENDING -> RUNNING -> SUCCEEDED
                           -> FAILED
                           -> DISCARDED   (run cancelled while in flight)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DISCARDED = "discarded"


_TRANSITIONS: Dict[StepState, frozenset] = {
    StepState.PENDING: frozenset({StepState.RUNNING}),
    StepState.RUNNING: frozenset(
        {StepState.SUCCEEDED, StepState.FAILED, StepState.DISCARDED}
    ),
    StepState.SUCCEEDED: frozenset(),
    StepState.FAILED: frozenset(),
    StepState.DISCARDED: frozenset(),
}


class InvalidTransition(StepweaveError):
    """Raised when a step is moved to a state its current state does not allow."""


class ExecutionContext:
    """Mutable state of a single run.

    Input resolution only consults step states and recorded outputs, so it
    does not depend on the order in which steps were dispatched.
    """

    def __init__(self, graph: Graph, run_id: str, input_data: Any = None) -> None:
        self.graph = graph
        self.run_id = run_id
        self.input_data = input_data
        self.current_data: Any = input_data
        self.last_step_id: Optional[str] = None
        self._states: Dict[str, StepState] = {
            step.id: StepState.PENDING for step in graph.steps
        }
        self._outputs: Dict[str, Any] = {}

    # ------------------------------------------------------------------
    # State machine
    def state(self, step_id: str) -> StepState:
        return self._states[step_id]

    def _transition(self, step_id: str, new_state: StepState) -> None:
        current = self._states[step_id]
        if new_state not in _TRANSITIONS[current]:
            raise InvalidTransition(
                f"Step {step_id} cannot move from {current.value} to {new_state.value}"
            )
        self._states[step_id] = new_state

    def mark_running(self, step_id: str) -> None:
        self._transition(step_id, StepState.RUNNING)

    def mark_succeeded(self, step_id: str, output: Any) -> None:
        self._transition(step_id, StepState.SUCCEEDED)
        self._outputs[step_id] = output
        self.current_data = output
        self.last_step_id = step_id

    def mark_failed(self, step_id: str) -> None:
        self._transition(step_id, StepState.FAILED)

    def mark_discarded(self, step_id: str) -> None:
        self._transition(step_id, StepState.DISCARDED)

    # ------------------------------------------------------------------
    # Data flow
    def steps_in(self, state: StepState) -> List[str]:
        return [step_id for step_id, s in self._states.items() if s == state]

    def resolve_input(self, step_id: str) -> Any:
        """Compute the effective input delivered to ``step_id``.

        * no predecessors: the run's original input;
        * one predecessor: that predecessor's output;
        * several predecessors: ``{predecessor_id: output}``, omitting those
          that produced no output.
        """
        predecessors = self.graph.predecessors(step_id)
        if not predecessors:
            return self.input_data
        if len(predecessors) == 1:
            return self._outputs.get(predecessors[0])
        return {
            pred: self._outputs[pred]
            for pred in predecessors
            if self._outputs.get(pred) is not None
        }
