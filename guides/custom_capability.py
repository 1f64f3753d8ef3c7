"""Example showing how to plug a custom capability into the engine.

The transform kind is served by a plain Python callable instead of the
scripted transform, and runs are stored in a local SQLite file.
"""

import asyncio

from stepweave import ExecutionEngine, StepKind, build_registry, load_graph
from stepweave.persistence import SQLiteRunRepository


class UppercaseNames:
    async def execute(self, config, input_data):
        field = config.get("field", "name")
        return [dict(row, **{field: row[field].upper()}) for row in input_data["rows"]]


GRAPH = {
    "id": "shout",
    "steps": [
        {
            "id": "load",
            "kind": "data-source",
            "label": "Load",
            "config": {"backend": "mock", "host": "localhost", "database": "shop", "username": "u", "password": "p"},
            "position": {"x": 0, "y": 0},
        },
        {
            "id": "shout",
            "kind": "transform",
            "label": "Shout",
            "config": {"operation": "map", "script": "return data", "field": "name"},
            "position": {"x": 200, "y": 0},
        },
    ],
    "connections": [{"id": "c1", "source": "load", "target": "shout"}],
}


async def main():
    registry = build_registry()
    registry.register(StepKind.TRANSFORM, UppercaseNames())
    engine = ExecutionEngine(registry=registry, repository=SQLiteRunRepository("runs.db"))

    run = await engine.run(load_graph(GRAPH), {"table": "customers"})
    print(run.status.value, [row["name"] for row in run.output_data])


if __name__ == "__main__":
    asyncio.run(main())
