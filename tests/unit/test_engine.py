"""Tests for the execution engine."""

import asyncio

import pytest

from fixtures.graphs import chain, make_graph, make_step

from stepweave.contracts import CapabilityError, Graph, StepKind, StepStatus
from stepweave.dispatch import CapabilityRegistry
from stepweave.execute import ExecutionEngine
from stepweave.persistence import (
    InMemoryRunRepository,
    RunStatus,
    StepExecutionStatus,
)


class RecordingCapability:
    """Appends its step label to the input and fails for configured labels."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    async def execute(self, config, input_data):
        name = config["name"]
        self.calls.append((name, input_data))
        if name in self.fail_on:
            raise CapabilityError(f"{name} exploded")
        previous = input_data if isinstance(input_data, list) else []
        return previous + [name]


class CancellingCapability:
    """Cancels every running run while it is in flight."""

    def __init__(self, repository):
        self.repository = repository

    async def execute(self, config, input_data):
        for run in await self.repository.list_runs(status=RunStatus.RUNNING):
            await self.repository.cancel_run(run.id)
        return "late result"


def _named_chain(*names):
    graph = chain(*names)
    for step in graph["steps"]:
        step["config"] = {"name": step["id"]}
    return Graph.model_validate(graph)


def _engine(capability, repository=None):
    registry = CapabilityRegistry({StepKind.TRANSFORM: capability})
    return ExecutionEngine(registry=registry, repository=repository or InMemoryRunRepository())


@pytest.mark.asyncio
async def test_linear_run_completes_and_records_steps_in_order():
    capability = RecordingCapability()
    engine = _engine(capability)
    graph = _named_chain("a", "b", "c")

    run = await engine.run(graph, [])

    assert run.status == RunStatus.COMPLETED
    assert run.output_data == ["a", "b", "c"]
    assert run.completed_at is not None
    steps = await engine.get_step_executions(run.id)
    assert [s.step_id for s in steps] == ["a", "b", "c"]
    assert [s.sequence for s in steps] == [0, 1, 2]
    assert all(s.status == StepExecutionStatus.SUCCESS for s in steps)
    assert steps[1].input_data == ["a"]
    assert all(step.status == StepStatus.SUCCEEDED for step in graph.steps)


@pytest.mark.asyncio
async def test_step_failure_is_fatal_and_later_steps_never_run():
    capability = RecordingCapability(fail_on={"b"})
    engine = _engine(capability)
    graph = _named_chain("a", "b", "c")

    run = await engine.run(graph, [])

    assert run.status == RunStatus.ERROR
    assert run.error_message == "b exploded"
    assert [name for name, _ in capability.calls] == ["a", "b"]

    steps = await engine.get_step_executions(run.id)
    assert [s.step_id for s in steps] == ["a", "b"]
    assert steps[1].status == StepExecutionStatus.ERROR
    assert steps[1].error_message == "b exploded"
    assert graph.get_step("b").status == StepStatus.FAILED
    assert graph.get_step("c").status == StepStatus.IDLE

    stored = await engine.get_run(run.id)
    assert stored.status == RunStatus.ERROR


@pytest.mark.asyncio
async def test_unorderable_graph_fails_before_any_dispatch():
    capability = RecordingCapability()
    engine = _engine(capability)
    graph = Graph.model_validate(
        make_graph(
            [make_step("a", config={"name": "a"}), make_step("b", config={"name": "b"})],
            [("a", "b"), ("b", "a")],
        )
    )

    run = await engine.run(graph)

    assert run.status == RunStatus.ERROR
    assert run.error_message == "Workflow contains cycles or invalid dependencies"
    assert capability.calls == []
    assert await engine.get_step_executions(run.id) == []


@pytest.mark.asyncio
async def test_fan_in_step_receives_outputs_keyed_by_predecessor():
    capability = RecordingCapability()
    engine = _engine(capability)
    steps = [make_step(name, config={"name": name}) for name in ("x", "y")]
    steps.append(make_step("z", config={"name": "z"}))
    graph = Graph.model_validate(make_graph(steps, [("x", "z"), ("y", "z")]))

    run = await engine.run(graph, [])

    assert run.status == RunStatus.COMPLETED
    assert capability.calls[-1] == ("z", {"x": ["x"], "y": ["y"]})


@pytest.mark.asyncio
async def test_missing_capability_fails_the_run():
    engine = ExecutionEngine(registry=CapabilityRegistry(), repository=InMemoryRunRepository())
    graph = Graph.model_validate(chain("a", "b", kind="delivery"))

    run = await engine.run(graph)

    assert run.status == RunStatus.ERROR
    assert run.error_message == "No capability registered for step kind: delivery"


@pytest.mark.asyncio
async def test_cancellation_discards_in_flight_result():
    repository = InMemoryRunRepository()
    engine = _engine(CancellingCapability(repository), repository)
    graph = Graph.model_validate(chain("a", "b"))

    run = await engine.run(graph, "input")

    assert run.status == RunStatus.CANCELLED
    assert run.output_data is None
    assert run.execution_time_ms is not None
    assert run.completed_at is not None
    steps = await engine.get_step_executions(run.id)
    assert len(steps) == 1
    assert steps[0].status == StepExecutionStatus.CANCELLED
    assert steps[0].output_data is None
    assert graph.get_step("a").status == StepStatus.IDLE


@pytest.mark.asyncio
async def test_cancel_of_finished_or_unknown_run_returns_false():
    engine = _engine(RecordingCapability())
    run = await engine.run(_named_chain("a"), [])

    assert await engine.cancel(run.id) is False
    assert await engine.cancel("no-such-run") is False
    assert (await engine.get_run(run.id)).status == RunStatus.COMPLETED


@pytest.mark.asyncio
async def test_concurrent_runs_are_isolated():
    engine = _engine(RecordingCapability(fail_on={"bad"}))

    good, bad = await asyncio.gather(
        engine.run(_named_chain("a", "b"), []),
        engine.run(_named_chain("bad", "c"), []),
    )

    assert good.status == RunStatus.COMPLETED
    assert bad.status == RunStatus.ERROR
    assert len(await engine.get_step_executions(good.id)) == 2
    assert len(await engine.get_step_executions(bad.id)) == 1


class PooledCapability(RecordingCapability):
    """Holds a resource that must be released when the engine shuts down."""

    def __init__(self):
        super().__init__()
        self.closed = 0

    async def close(self):
        self.closed += 1


class SyncClosingCapability(RecordingCapability):
    def __init__(self):
        super().__init__()
        self.closed = False

    def close(self):
        self.closed = True


@pytest.mark.asyncio
async def test_aclose_closes_each_capability_once():
    pooled = PooledCapability()
    sync = SyncClosingCapability()
    registry = CapabilityRegistry(
        {
            StepKind.DATA_SOURCE: pooled,
            StepKind.TRANSFORM: pooled,
            StepKind.DELIVERY: sync,
            StepKind.AI_PROCESSOR: RecordingCapability(),
        }
    )
    engine = ExecutionEngine(registry=registry, repository=InMemoryRunRepository())

    await engine.run(_named_chain("a"), [])
    await engine.aclose()

    assert pooled.closed == 1
    assert sync.closed is True


class CancelOnFinishRepository(InMemoryRunRepository):
    """Cancels the run just before the engine records its final status."""

    async def mark_run_finished(self, run):
        await self.cancel_run(run.id)
        await super().mark_run_finished(run)


@pytest.mark.asyncio
async def test_run_cancelled_while_finishing_is_reported_as_cancelled():
    repository = CancelOnFinishRepository()
    engine = _engine(RecordingCapability(), repository)

    run = await engine.run(_named_chain("a", "b"), [])

    assert run.status == RunStatus.CANCELLED
    assert run.output_data is None
    assert run.execution_time_ms is not None
    assert (await engine.get_run(run.id)).status == RunStatus.CANCELLED
