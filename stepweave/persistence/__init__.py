"""Run ledger persistence for stepweave."""

from __future__ import annotations

import os
from typing import Optional

from ..config import StepweaveConfig, load_config
from .inmemory import InMemoryRunRepository
from .models import (
    ExecutionRun,
    RunStatus,
    StepExecution,
    StepExecutionStatus,
    TERMINAL_RUN_STATUSES,
)
from .postgres import PostgresRunRepository
from .repository import RunRepository
from .sqlite import SQLiteRunRepository

LEDGER_SCHEMES = ("sqlite", "postgres", "postgresql")

_repository_instance: RunRepository | None = None


def ledger_url(
    database_url: Optional[str] = None, config: Optional[StepweaveConfig] = None
) -> Optional[str]:
    """Resolve where the run ledger lives.

    An explicit ``database_url`` wins, then ``STEPWEAVE_DATABASE_URL`` and
    ``DATABASE_URL``, then ``database_url`` from configuration. ``None`` means
    runs are kept in memory.
    """
    if database_url:
        return database_url
    env_url = os.getenv("STEPWEAVE_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_url:
        return env_url
    return (config or load_config()).database_url


def open_ledger(database_url: Optional[str]) -> RunRepository:
    """Create the repository backend for a ledger URL."""
    if not database_url:
        return InMemoryRunRepository()
    scheme, sep, location = database_url.partition("://")
    if not sep or scheme not in LEDGER_SCHEMES:
        raise ValueError(f"Unsupported run ledger URL: {database_url}")
    if scheme == "sqlite":
        return SQLiteRunRepository(location)
    return PostgresRunRepository(database_url)


def get_repository(
    database_url: Optional[str] = None, config: Optional[StepweaveConfig] = None
) -> RunRepository:
    """Return the process-wide run ledger.

    Called without arguments it reuses the ledger opened earlier, so every
    CLI command in a process reads and writes the same runs. Passing a URL or
    a config opens a new ledger and makes it the shared one.
    """
    global _repository_instance
    if _repository_instance is None or database_url or config is not None:
        _repository_instance = open_ledger(ledger_url(database_url, config))
    return _repository_instance


__all__ = [
    "ExecutionRun",
    "RunStatus",
    "StepExecution",
    "StepExecutionStatus",
    "TERMINAL_RUN_STATUSES",
    "RunRepository",
    "InMemoryRunRepository",
    "SQLiteRunRepository",
    "PostgresRunRepository",
    "get_repository",
    "ledger_url",
    "open_ledger",
]
