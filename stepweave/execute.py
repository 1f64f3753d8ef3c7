"""Workflow execution engine."""

from __future__ import annotations

import inspect
import logging
import time
from typing import Any, Optional

from .config import StepweaveConfig
from .context import ExecutionContext
from .contracts import Graph, SchedulingError, Step, StepFailed, StepStatus
from .dispatch import CapabilityRegistry, StepDispatcher
from .persistence import (
    ExecutionRun,
    RunRepository,
    RunStatus,
    StepExecution,
    StepExecutionStatus,
    get_repository,
)
from .persistence.models import utcnow
from .schedule import require_complete_order

logger = logging.getLogger(__name__)


class ExecutionEngine:
    """Runs a workflow graph once, step by step, in topological order.

    Any step failure is fatal to the run: the remaining steps are never
    dispatched and the run finishes with the failing step's message. Workflow
    level failures are reported on the returned :class:`ExecutionRun` instead
    of being raised.
    """

    def __init__(
        self,
        registry: Optional[CapabilityRegistry] = None,
        repository: RunRepository | None = None,
        config: Optional[StepweaveConfig] = None,
    ) -> None:
        if registry is None:
            from .capabilities import build_registry

            registry = build_registry(config)
        missing = registry.missing_kinds()
        if missing:
            logger.warning(
                f"No capability registered for step kinds: {[k.value for k in missing]}"
            )
        self._registry = registry
        self._dispatcher = StepDispatcher(registry)
        self._repository = repository or get_repository(config=config)

    @property
    def repository(self) -> RunRepository:
        return self._repository

    async def run(self, graph: Graph, input_data: Any = None) -> ExecutionRun:
        """Execute ``graph`` with ``input_data`` and return the finished run."""
        start = time.perf_counter()
        run = ExecutionRun(workflow_id=graph.id, input_data=input_data)
        await self._repository.create_run(run)
        logger.info(f"Run {run.id} started for workflow {graph.id or graph.name}")

        try:
            order = require_complete_order(graph)
        except SchedulingError as e:
            return await self._finish(run, start, RunStatus.ERROR, error=str(e))

        context = ExecutionContext(graph, run.id, input_data)
        for sequence, step_id in enumerate(order):
            step = graph.get_step(step_id)
            step_execution = await self._execute_step(step, sequence, context)

            if (
                step_execution.status == StepExecutionStatus.CANCELLED
                or await self._is_cancelled(run.id)
            ):
                logger.info(f"Run {run.id} was cancelled; stopping after step {step_id}")
                return await self._finish(run, start, RunStatus.CANCELLED)

            if step_execution.status == StepExecutionStatus.ERROR:
                return await self._finish(
                    run, start, RunStatus.ERROR, error=step_execution.error_message
                )

        return await self._finish(
            run, start, RunStatus.COMPLETED, output=context.current_data
        )

    async def _execute_step(
        self, step: Step, sequence: int, context: ExecutionContext
    ) -> StepExecution:
        """Dispatch one step and record its StepExecution."""
        input_data = context.resolve_input(step.id)
        step_execution = StepExecution(
            run_id=context.run_id,
            step_id=step.id,
            step_kind=step.kind,
            sequence=sequence,
            input_data=input_data,
        )
        await self._repository.mark_step_started(step_execution)
        context.mark_running(step.id)
        step.status = StepStatus.RUNNING
        step.last_executed_at = step_execution.started_at
        start = time.perf_counter()

        try:
            outcome = await self._dispatcher.dispatch(step, input_data)
        except StepFailed as e:
            step_execution.status = StepExecutionStatus.ERROR
            step_execution.error_message = e.message
            step_execution.execution_time_ms = (time.perf_counter() - start) * 1000
            context.mark_failed(step.id)
            step.status = StepStatus.FAILED
            step.error_message = e.message
            logger.error(f"Step {step.id} ({step.kind.value}) failed: {e.message}")
        else:
            step_execution.execution_time_ms = outcome.duration_ms
            if await self._is_cancelled(context.run_id):
                # late result of a cancelled run is dropped
                step_execution.status = StepExecutionStatus.CANCELLED
                context.mark_discarded(step.id)
                step.status = StepStatus.IDLE
            else:
                step_execution.status = StepExecutionStatus.SUCCESS
                step_execution.output_data = outcome.output
                context.mark_succeeded(step.id, outcome.output)
                step.status = StepStatus.SUCCEEDED
                step.error_message = None
                logger.info(
                    f"Step {step.id} ({step.kind.value}) succeeded in "
                    f"{outcome.duration_ms:.1f}ms"
                )

        step_execution.completed_at = utcnow()
        step.execution_time_ms = step_execution.execution_time_ms
        await self._repository.mark_step_finished(step_execution)
        return step_execution

    async def _is_cancelled(self, run_id: str) -> bool:
        stored = await self._repository.get_run(run_id)
        return stored is not None and stored.status == RunStatus.CANCELLED

    async def _finish(
        self,
        run: ExecutionRun,
        start: float,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> ExecutionRun:
        run.status = status
        run.output_data = output
        run.error_message = error
        run.execution_time_ms = (time.perf_counter() - start) * 1000
        run.completed_at = utcnow()
        await self._repository.mark_run_finished(run)

        # a run cancelled meanwhile stays cancelled; report what was stored
        stored = await self._repository.get_run(run.id) or run
        if stored.status == RunStatus.CANCELLED:
            logger.info(f"Run {run.id} cancelled after {run.execution_time_ms:.1f}ms")
        elif stored.status == RunStatus.ERROR:
            logger.error(
                f"Run {run.id} failed after {run.execution_time_ms:.1f}ms: {error}"
            )
        else:
            logger.info(f"Run {run.id} completed in {run.execution_time_ms:.1f}ms")
        return stored

    async def cancel(self, run_id: str) -> bool:
        """Request cancellation of a running run.

        Best effort: a step already in flight is not interrupted, its result is
        discarded when it returns. Returns ``False`` if the run is unknown or
        already finished.
        """
        cancelled = await self._repository.cancel_run(run_id)
        if cancelled:
            logger.info(f"Run {run_id} marked cancelled")
        else:
            logger.warning(f"Run {run_id} is not running; cancel request ignored")
        return cancelled

    async def get_run(self, run_id: str) -> ExecutionRun | None:
        return await self._repository.get_run(run_id)

    async def get_step_executions(self, run_id: str) -> list[StepExecution]:
        return await self._repository.list_step_executions(run_id)

    async def aclose(self) -> None:
        """Release resources held by the registered capabilities.

        Capabilities may define a sync or async ``close()``; it is called once
        per distinct capability instance.
        """
        seen = set()
        for capability in self._registry.capabilities():
            if id(capability) in seen:
                continue
            seen.add(id(capability))
            close = getattr(capability, "close", None)
            if close is None:
                continue
            result = close()
            if inspect.isawaitable(result):
                await result
