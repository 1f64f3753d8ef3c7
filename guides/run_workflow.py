"""Example showing how to validate and run a workflow file.

Usage: python guides/run_workflow.py guides/customer_report.json

Without GROQ_API_KEY set the AI step answers in mock mode.
"""

import asyncio
import logging
import sys
from pathlib import Path

from stepweave import ExecutionEngine, load_config, load_graph
from stepweave.cli_utils.graph import read_graph_file


async def main():
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path(__file__).with_name("customer_report.json")
    config = load_config()
    graph = load_graph(read_graph_file(path), strict_cycles=config.validation.cycles_are_errors)

    engine = ExecutionEngine(config=config)
    try:
        run = await engine.run(graph)
    finally:
        await engine.aclose()

    print(f"Run {run.id}: {run.status.value} in {run.execution_time_ms:.1f}ms")
    for step in await engine.get_step_executions(run.id):
        print(f"- {step.step_id}: {step.status.value}")
    if run.error_message:
        print(f"Error: {run.error_message}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    asyncio.run(main())
