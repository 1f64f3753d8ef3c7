"""PostgreSQL implementation of the run repository."""

from __future__ import annotations

import json
from typing import Any, Optional

import asyncpg

from .models import ExecutionRun, RunStatus, StepExecution, utcnow
from .repository import RunRepository

RUN_COLUMNS = (
    "id, workflow_id, status, input_data, output_data, error_message, "
    "execution_time_ms, started_at, completed_at"
)
STEP_COLUMNS = (
    "id, run_id, step_id, step_kind, sequence, status, input_data, output_data, "
    "error_message, execution_time_ms, started_at, completed_at"
)


def _dumps(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _loads(value: str | None) -> Any:
    return None if value is None else json.loads(value)


class PostgresRunRepository(RunRepository):
    """Persist the run ledger using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                status TEXT NOT NULL,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                execution_time_ms DOUBLE PRECISION,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL REFERENCES execution_runs(id),
                step_id TEXT NOT NULL,
                step_kind TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                status TEXT NOT NULL,
                input_data JSONB,
                output_data JSONB,
                error_message TEXT,
                execution_time_ms DOUBLE PRECISION,
                started_at TIMESTAMPTZ NOT NULL,
                completed_at TIMESTAMPTZ
            )
            """
        )

    @staticmethod
    def _run_from_row(row: asyncpg.Record) -> ExecutionRun:
        return ExecutionRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            execution_time_ms=row["execution_time_ms"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    @staticmethod
    def _step_from_row(row: asyncpg.Record) -> StepExecution:
        return StepExecution(
            id=row["id"],
            run_id=row["run_id"],
            step_id=row["step_id"],
            step_kind=row["step_kind"],
            sequence=row["sequence"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            execution_time_ms=row["execution_time_ms"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
        )

    # ------------------------------------------------------------------
    async def create_run(self, run: ExecutionRun) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO execution_runs ({RUN_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)",
                run.id,
                run.workflow_id,
                run.status.value,
                _dumps(run.input_data),
                _dumps(run.output_data),
                run.error_message,
                run.execution_time_ms,
                run.started_at,
                run.completed_at,
            )
        finally:
            await conn.close()

    async def mark_run_finished(self, run: ExecutionRun) -> None:
        conn = await self._connect()
        try:
            result = await conn.execute(
                """
                UPDATE execution_runs
                SET status = $1, output_data = $2, error_message = $3,
                    execution_time_ms = $4, completed_at = $5
                WHERE id = $6 AND status = $7
                """,
                run.status.value,
                _dumps(run.output_data),
                run.error_message,
                run.execution_time_ms,
                run.completed_at,
                run.id,
                RunStatus.RUNNING.value,
            )
            if result.split()[-1] == "0":
                # a cancelled run keeps its status but records how long it ran
                await conn.execute(
                    "UPDATE execution_runs SET execution_time_ms = $1 "
                    "WHERE id = $2 AND status = $3 AND execution_time_ms IS NULL",
                    run.execution_time_ms,
                    run.id,
                    RunStatus.CANCELLED.value,
                )
        finally:
            await conn.close()

    async def mark_step_started(self, step: StepExecution) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                f"INSERT INTO step_executions ({STEP_COLUMNS}) "
                "VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12) "
                "ON CONFLICT (id) DO NOTHING",
                step.id,
                step.run_id,
                step.step_id,
                step.step_kind.value,
                step.sequence,
                step.status.value,
                _dumps(step.input_data),
                _dumps(step.output_data),
                step.error_message,
                step.execution_time_ms,
                step.started_at,
                step.completed_at,
            )
        finally:
            await conn.close()

    async def mark_step_finished(self, step: StepExecution) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                UPDATE step_executions
                SET status = $1, output_data = $2, error_message = $3,
                    execution_time_ms = $4, completed_at = $5
                WHERE id = $6
                """,
                step.status.value,
                _dumps(step.output_data),
                step.error_message,
                step.execution_time_ms,
                step.completed_at,
                step.id,
            )
        finally:
            await conn.close()

    async def cancel_run(self, run_id: str) -> bool:
        conn = await self._connect()
        try:
            result = await conn.execute(
                "UPDATE execution_runs SET status = $1, completed_at = $2 "
                "WHERE id = $3 AND status = $4",
                RunStatus.CANCELLED.value,
                utcnow(),
                run_id,
                RunStatus.RUNNING.value,
            )
        finally:
            await conn.close()
        # asyncpg returns the command tag, e.g. "UPDATE 1"
        return result.split()[-1] != "0"

    async def get_run(self, run_id: str) -> ExecutionRun | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                f"SELECT {RUN_COLUMNS} FROM execution_runs WHERE id = $1", run_id
            )
        finally:
            await conn.close()
        return self._run_from_row(row) if row else None

    async def list_runs(self, status: Optional[RunStatus] = None) -> list[ExecutionRun]:
        conn = await self._connect()
        try:
            if status is None:
                rows = await conn.fetch(
                    f"SELECT {RUN_COLUMNS} FROM execution_runs ORDER BY started_at"
                )
            else:
                rows = await conn.fetch(
                    f"SELECT {RUN_COLUMNS} FROM execution_runs WHERE status = $1 "
                    "ORDER BY started_at",
                    RunStatus(status).value,
                )
        finally:
            await conn.close()
        return [self._run_from_row(row) for row in rows]

    async def list_step_executions(self, run_id: str) -> list[StepExecution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                f"SELECT {STEP_COLUMNS} FROM step_executions WHERE run_id = $1 "
                "ORDER BY sequence",
                run_id,
            )
        finally:
            await conn.close()
        return [self._step_from_row(row) for row in rows]
