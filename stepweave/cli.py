"""Command line interface for validating and running stepweave workflows."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import typer
import yaml

from stepweave import ExecutionEngine, get_repository, load_config
from stepweave.cli_utils.graph import format_duration, parse_input, read_graph_file
from stepweave.contracts import Graph, GraphValidationError, load_graph
from stepweave.persistence import RunStatus
from stepweave.schedule import execution_order
from stepweave.validation import validate_graph

app = typer.Typer(help="CLI for stepweave workflows")

# Command groups
workflow_app = typer.Typer(help="Commands for validating and running workflows")
runs_app = typer.Typer(help="Commands for inspecting execution runs")

app.add_typer(workflow_app, name="workflow")
app.add_typer(runs_app, name="runs")


@app.callback()
def main(
    log_level: Optional[str] = typer.Option(
        None, "--log-level", help="Logging level (defaults to log_level in config)"
    ),
) -> None:
    """stepweave CLI entry point."""
    level = (log_level or load_config().log_level).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _read(path: Path) -> dict:
    if not path.exists():
        typer.secho(f"File not found: {path}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    try:
        return read_graph_file(path)
    except (ValueError, yaml.YAMLError) as exc:
        typer.secho(f"Could not parse {path}: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)


@workflow_app.command("validate")
def workflow_validate(
    path: Path,
    strict: bool = typer.Option(False, "--strict", help="Treat cycles as errors"),
) -> None:
    """
    Validate a workflow graph file.

    Reports every structural error and warning. Exits with code 1 when the
    graph has errors.

    Example:
        stepweave workflow validate ./pipeline.json
        stepweave workflow validate ./pipeline.yaml --strict
    """
    data = _read(path)
    strict = strict or load_config().validation.cycles_are_errors
    result = validate_graph(data, strict_cycles=strict)

    for error in result.errors:
        typer.secho(f"ERROR: {error}", fg=typer.colors.RED)
    for warning in result.warnings:
        typer.secho(f"WARNING: {warning}", fg=typer.colors.YELLOW)

    if not result.is_valid:
        typer.echo(f"Workflow is invalid ({len(result.errors)} error(s))")
        raise typer.Exit(code=1)
    typer.echo(f"Workflow is valid ({len(result.warnings)} warning(s))")


@workflow_app.command("order")
def workflow_order(path: Path) -> None:
    """
    Print the execution order of a workflow graph.

    Steps on a cycle cannot be ordered; they are listed separately and the
    command exits with code 1.
    """
    data = _read(path)
    try:
        graph = Graph.model_validate(data)
    except ValueError as exc:
        typer.secho(f"Invalid workflow: {exc}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    order = execution_order(graph)
    for position, step_id in enumerate(order, start=1):
        step = graph.get_step(step_id)
        typer.echo(f"{position}. {step_id} ({step.kind.value})")

    stranded = [step_id for step_id in graph.step_ids if step_id not in order]
    if stranded:
        typer.secho(
            f"Cannot order steps: {', '.join(stranded)}", fg=typer.colors.RED
        )
        raise typer.Exit(code=1)


@workflow_app.command("run")
def workflow_run(
    path: Path,
    input: Optional[str] = typer.Option(
        None, "--input", help="Run input as JSON (plain text is passed as a string)"
    ),
) -> None:
    """
    Validate and execute a workflow once.

    Prints the run id, its final status and the run output. Exits with code 1
    when validation fails or the run ends in error.

    Example:
        stepweave workflow run ./pipeline.json --input '{"table": "customers"}'
    """
    config = load_config()
    data = _read(path)
    try:
        graph = load_graph(data, strict_cycles=config.validation.cycles_are_errors)
    except GraphValidationError as exc:
        for error in exc.result.errors:
            typer.secho(f"ERROR: {error}", fg=typer.colors.RED)
        raise typer.Exit(code=1)

    engine = ExecutionEngine(config=config, repository=get_repository())

    async def _execute():
        try:
            return await engine.run(graph, parse_input(input))
        finally:
            await engine.aclose()

    run = asyncio.run(_execute())

    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.status == RunStatus.ERROR:
        typer.secho(f"Error: {run.error_message}", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(json.dumps(run.output_data, indent=2, default=str))


@runs_app.command("list")
def runs_list(
    status: Optional[RunStatus] = typer.Option(None, "--status", help="Filter by status"),
) -> None:
    """List execution runs with their status."""
    repo = get_repository()
    runs = asyncio.run(repo.list_runs(status=status))
    if not runs:
        typer.echo("No runs found")
        return
    for run in runs:
        typer.echo(
            f"{run.id}\t{run.workflow_id or '-'}\t{run.status.value}\t"
            f"{format_duration(run.execution_time_ms)}"
        )


@runs_app.command("show")
def runs_show(run_id: str) -> None:
    """
    Show a run and its step executions in dispatch order.

    Example:
        stepweave runs show 7d3c...
        # Output: Run 7d3c...: error
        #         Error: Step transform-1 timed out: ...
        #         - source-1 (data-source): success 2.1ms
        #         - transform-1 (transform): error 30000.4ms
    """
    repo = get_repository()
    run = asyncio.run(repo.get_run(run_id))
    if run is None:
        typer.echo("Run not found")
        raise typer.Exit(code=1)

    typer.echo(f"Run {run.id}: {run.status.value}")
    if run.workflow_id:
        typer.echo(f"Workflow: {run.workflow_id}")
    if run.error_message:
        typer.echo(f"Error: {run.error_message}")
    for step in asyncio.run(repo.list_step_executions(run_id)):
        line = (
            f"- {step.step_id} ({step.step_kind.value}): {step.status.value} "
            f"{format_duration(step.execution_time_ms)}"
        )
        if step.error_message:
            line += f" [{step.error_message}]"
        typer.echo(line)


@runs_app.command("cancel")
def runs_cancel(run_id: str) -> None:
    """Request cancellation of a running run."""
    repo = get_repository()
    if not asyncio.run(repo.cancel_run(run_id)):
        typer.secho(f"Run {run_id} is not running", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    typer.echo(f"Run {run_id} cancelled")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    app()
