"""Repository abstraction for the run ledger."""

from __future__ import annotations

from typing import Optional, Protocol

from .models import ExecutionRun, RunStatus, StepExecution


class RunRepository(Protocol):
    """Protocol for run ledger persistence backends."""

    async def create_run(self, run: ExecutionRun) -> None:
        """Persist a newly started run."""

    async def mark_run_finished(self, run: ExecutionRun) -> None:
        """Persist the terminal status, output, error and timing of ``run``.

        Backends must not overwrite a run that has already been cancelled;
        they only record its ``execution_time_ms`` if it has none yet.
        """

    async def mark_step_started(self, step: StepExecution) -> None:
        """Record the creation of a step execution."""

    async def mark_step_finished(self, step: StepExecution) -> None:
        """Record the final state of a step execution."""

    async def cancel_run(self, run_id: str) -> bool:
        """Flip a running run to cancelled. Return ``False`` if it was not running."""

    async def get_run(self, run_id: str) -> ExecutionRun | None:
        """Retrieve a run by id."""

    async def list_runs(self, status: Optional[RunStatus] = None) -> list[ExecutionRun]:
        """Return persisted runs, optionally filtered by status."""

    async def list_step_executions(self, run_id: str) -> list[StepExecution]:
        """Return step executions of a run in dispatch order."""
