"""SQLite implementation of the run repository."""

from __future__ import annotations

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

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


def _timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_timestamp(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteRunRepository(RunRepository):
    """Persist the run ledger using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS execution_runs (
                id TEXT PRIMARY KEY,
                workflow_id TEXT,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                execution_time_ms REAL,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS step_executions (
                id TEXT PRIMARY KEY,
                run_id TEXT NOT NULL REFERENCES execution_runs(id),
                step_id TEXT NOT NULL,
                step_kind TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                status TEXT NOT NULL,
                input_data TEXT,
                output_data TEXT,
                error_message TEXT,
                execution_time_ms REAL,
                started_at TEXT NOT NULL,
                completed_at TEXT
            )
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    # ------------------------------------------------------------------
    # Helper methods
    def _execute(self, query: str, *params: Any) -> int:
        cur = self._conn.cursor()
        cur.execute(query, params)
        self._conn.commit()
        return cur.rowcount

    def _fetchone(self, query: str, *params: Any) -> sqlite3.Row | None:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchone()

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        cur = self._conn.cursor()
        cur.execute(query, params)
        return cur.fetchall()

    @staticmethod
    def _run_from_row(row: sqlite3.Row) -> ExecutionRun:
        return ExecutionRun(
            id=row["id"],
            workflow_id=row["workflow_id"],
            status=row["status"],
            input_data=_loads(row["input_data"]),
            output_data=_loads(row["output_data"]),
            error_message=row["error_message"],
            execution_time_ms=row["execution_time_ms"],
            started_at=_parse_timestamp(row["started_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
        )

    @staticmethod
    def _step_from_row(row: sqlite3.Row) -> StepExecution:
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
            started_at=_parse_timestamp(row["started_at"]),
            completed_at=_parse_timestamp(row["completed_at"]),
        )

    # ------------------------------------------------------------------
    # Repository API
    async def create_run(self, run: ExecutionRun) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT INTO execution_runs ({RUN_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            run.id,
            run.workflow_id,
            run.status.value,
            _dumps(run.input_data),
            _dumps(run.output_data),
            run.error_message,
            run.execution_time_ms,
            _timestamp(run.started_at),
            _timestamp(run.completed_at),
        )

    async def mark_run_finished(self, run: ExecutionRun) -> None:
        updated = await asyncio.to_thread(
            self._execute,
            """
            UPDATE execution_runs
            SET status = ?, output_data = ?, error_message = ?,
                execution_time_ms = ?, completed_at = ?
            WHERE id = ? AND status = ?
            """,
            run.status.value,
            _dumps(run.output_data),
            run.error_message,
            run.execution_time_ms,
            _timestamp(run.completed_at),
            run.id,
            RunStatus.RUNNING.value,
        )
        if not updated:
            # a cancelled run keeps its status but records how long it ran
            await asyncio.to_thread(
                self._execute,
                "UPDATE execution_runs SET execution_time_ms = ? "
                "WHERE id = ? AND status = ? AND execution_time_ms IS NULL",
                run.execution_time_ms,
                run.id,
                RunStatus.CANCELLED.value,
            )

    async def mark_step_started(self, step: StepExecution) -> None:
        await asyncio.to_thread(
            self._execute,
            f"INSERT OR IGNORE INTO step_executions ({STEP_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
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
            _timestamp(step.started_at),
            _timestamp(step.completed_at),
        )

    async def mark_step_finished(self, step: StepExecution) -> None:
        await asyncio.to_thread(
            self._execute,
            """
            UPDATE step_executions
            SET status = ?, output_data = ?, error_message = ?,
                execution_time_ms = ?, completed_at = ?
            WHERE id = ?
            """,
            step.status.value,
            _dumps(step.output_data),
            step.error_message,
            step.execution_time_ms,
            _timestamp(step.completed_at),
            step.id,
        )

    async def cancel_run(self, run_id: str) -> bool:
        updated = await asyncio.to_thread(
            self._execute,
            "UPDATE execution_runs SET status = ?, completed_at = ? WHERE id = ? AND status = ?",
            RunStatus.CANCELLED.value,
            _timestamp(utcnow()),
            run_id,
            RunStatus.RUNNING.value,
        )
        return updated > 0

    async def get_run(self, run_id: str) -> ExecutionRun | None:
        row = await asyncio.to_thread(
            self._fetchone,
            f"SELECT {RUN_COLUMNS} FROM execution_runs WHERE id = ?",
            run_id,
        )
        return self._run_from_row(row) if row else None

    async def list_runs(self, status: Optional[RunStatus] = None) -> list[ExecutionRun]:
        if status is None:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {RUN_COLUMNS} FROM execution_runs ORDER BY started_at",
            )
        else:
            rows = await asyncio.to_thread(
                self._fetchall,
                f"SELECT {RUN_COLUMNS} FROM execution_runs WHERE status = ? ORDER BY started_at",
                RunStatus(status).value,
            )
        return [self._run_from_row(row) for row in rows]

    async def list_step_executions(self, run_id: str) -> list[StepExecution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {STEP_COLUMNS} FROM step_executions WHERE run_id = ? ORDER BY sequence",
            run_id,
        )
        return [self._step_from_row(row) for row in rows]
