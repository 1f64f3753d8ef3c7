"""Execution order derivation for workflow graphs."""

from __future__ import annotations

import logging
from collections import deque
from typing import Dict, List

from .contracts import Graph, SchedulingError

logger = logging.getLogger(__name__)

INCOMPLETE_ORDER_MESSAGE = "Workflow contains cycles or invalid dependencies"


def execution_order(graph: Graph) -> List[str]:
    """Compute a topological order of ``graph`` using Kahn's algorithm.

    Ties are broken by step insertion order. When the graph contains a cycle
    the steps on it never reach in-degree zero, so the returned list is shorter
    than ``graph.steps``.
    """
    in_degree: Dict[str, int] = {step.id: 0 for step in graph.steps}
    successors: Dict[str, List[str]] = {step.id: [] for step in graph.steps}

    for conn in graph.connections:
        if conn.source not in in_degree or conn.target not in in_degree:
            continue
        successors[conn.source].append(conn.target)
        in_degree[conn.target] += 1

    queue = deque(step_id for step_id, degree in in_degree.items() if degree == 0)
    order: List[str] = []

    while queue:
        current = queue.popleft()
        order.append(current)
        for successor in successors[current]:
            in_degree[successor] -= 1
            if in_degree[successor] == 0:
                queue.append(successor)

    return order


def require_complete_order(graph: Graph) -> List[str]:
    """Return the execution order or fail when it omits any step.

    Raises:
        SchedulingError: If some step can never become ready.
    """
    order = execution_order(graph)
    if len(order) != len(graph.steps):
        stranded = [step_id for step_id in graph.step_ids if step_id not in order]
        logger.error(f"Unorderable steps in workflow {graph.id or graph.name}: {stranded}")
        raise SchedulingError(INCOMPLETE_ORDER_MESSAGE)
    return order
