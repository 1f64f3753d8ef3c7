"""In-memory implementation of the run repository."""

from __future__ import annotations

from typing import Dict, List, Optional

from .models import ExecutionRun, RunStatus, StepExecution, utcnow
from .repository import RunRepository


class InMemoryRunRepository(RunRepository):
    """Store the run ledger in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are copied on the way in and
    out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._runs: Dict[str, ExecutionRun] = {}
        self._steps: Dict[str, List[StepExecution]] = {}

    # ------------------------------------------------------------------
    async def create_run(self, run: ExecutionRun) -> None:
        self._runs[run.id] = run.model_copy(deep=True)
        self._steps[run.id] = []

    async def mark_run_finished(self, run: ExecutionRun) -> None:
        stored = self._runs.get(run.id)
        if stored is None:
            return
        if stored.status == RunStatus.CANCELLED and stored.execution_time_ms is None:
            stored.execution_time_ms = run.execution_time_ms
        if stored.status != RunStatus.RUNNING:
            return
        self._runs[run.id] = run.model_copy(deep=True)

    async def mark_step_started(self, step: StepExecution) -> None:
        steps = self._steps.setdefault(step.run_id, [])
        # ignore duplicate starts for the same record
        if any(existing.id == step.id for existing in steps):
            return
        steps.append(step.model_copy(deep=True))

    async def mark_step_finished(self, step: StepExecution) -> None:
        steps = self._steps.get(step.run_id, [])
        for index, existing in enumerate(steps):
            if existing.id == step.id:
                steps[index] = step.model_copy(deep=True)
                break

    async def cancel_run(self, run_id: str) -> bool:
        run = self._runs.get(run_id)
        if run is None or run.status != RunStatus.RUNNING:
            return False
        run.status = RunStatus.CANCELLED
        run.completed_at = utcnow()
        return True

    async def get_run(self, run_id: str) -> ExecutionRun | None:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run else None

    async def list_runs(self, status: Optional[RunStatus] = None) -> list[ExecutionRun]:
        return [
            run.model_copy(deep=True)
            for run in self._runs.values()
            if status is None or run.status == status
        ]

    async def list_step_executions(self, run_id: str) -> list[StepExecution]:
        steps = self._steps.get(run_id, [])
        return [step.model_copy(deep=True) for step in sorted(steps, key=lambda s: s.sequence)]
