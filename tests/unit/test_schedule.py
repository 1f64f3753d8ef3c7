import pytest

from fixtures.graphs import chain, make_graph, make_step

from stepweave.contracts import Graph, SchedulingError
from stepweave.schedule import execution_order, require_complete_order
from stepweave.validation import detect_cycles


def _graph(step_ids, edges):
    return Graph.model_validate(make_graph([make_step(s) for s in step_ids], edges))


def test_order_respects_every_edge():
    edges = [("a", "c"), ("b", "c"), ("c", "d"), ("a", "e"), ("e", "d")]
    graph = _graph(["d", "c", "b", "a", "e"], edges)
    order = execution_order(graph)

    assert sorted(order) == sorted(graph.step_ids)
    for source, target in edges:
        assert order.index(source) < order.index(target)


def test_ties_broken_by_insertion_order():
    graph = _graph(["x", "y", "z"], [])
    assert execution_order(graph) == ["x", "y", "z"]

    graph = _graph(["root", "b", "a"], [("root", "b"), ("root", "a")])
    assert execution_order(graph) == ["root", "b", "a"]


def test_duplicate_edges_do_not_block_target():
    graph = Graph.model_validate(
        {
            "steps": [make_step("a"), make_step("b")],
            "connections": [
                {"id": "c1", "source": "a", "target": "b"},
                {"id": "c2", "source": "a", "target": "b"},
            ],
        }
    )
    assert execution_order(graph) == ["a", "b"]


def test_cycle_gives_short_order():
    graph = _graph(["a", "b", "c"], [("a", "b"), ("b", "c"), ("c", "a")])
    assert execution_order(graph) == []
    cycles = detect_cycles(graph.step_ids, graph.connections)
    assert ["a", "b", "c", "a"] in cycles


def test_cycle_downstream_of_entry_strands_only_cycle_steps():
    graph = _graph(["start", "x", "y"], [("start", "x"), ("x", "y"), ("y", "x")])
    assert execution_order(graph) == ["start"]


def test_require_complete_order_raises_on_cycle():
    graph = _graph(["a", "b"], [("a", "b"), ("b", "a")])
    with pytest.raises(SchedulingError, match="contains cycles or invalid dependencies"):
        require_complete_order(graph)


def test_require_complete_order_returns_full_order():
    graph = Graph.model_validate(chain("a", "b", "c"))
    assert require_complete_order(graph) == ["a", "b", "c"]
