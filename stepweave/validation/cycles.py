"""Circular dependency detection."""

from __future__ import annotations

from typing import Dict, Iterable, List, Set

from ._normalize import connection_endpoints


def detect_cycles(step_ids: Iterable[str], connections: Iterable) -> List[List[str]]:
    """Return every cycle found by a depth-first walk of the step graph.

    Each cycle is the path from the re-entered step back to itself, e.g.
    ``["a", "b", "c", "a"]``. Connections naming unknown steps are ignored.
    """
    adjacency: Dict[str, List[str]] = {step_id: [] for step_id in step_ids}
    for source, target in connection_endpoints(connections):
        if not isinstance(source, str) or not isinstance(target, str):
            continue
        if source in adjacency and target in adjacency:
            adjacency[source].append(target)

    visited: Set[str] = set()
    on_stack: Set[str] = set()
    cycles: List[List[str]] = []

    def _visit(step_id: str, path: List[str]) -> None:
        visited.add(step_id)
        on_stack.add(step_id)
        path = path + [step_id]

        for neighbour in adjacency[step_id]:
            if neighbour not in visited:
                _visit(neighbour, path)
            elif neighbour in on_stack:
                start = path.index(neighbour)
                cycles.append(path[start:] + [neighbour])

        on_stack.discard(step_id)

    for step_id in adjacency:
        if step_id not in visited:
            _visit(step_id, [])

    return cycles
