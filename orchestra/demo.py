"""CLI demonstration of a templated workflow run with the default agents."""
from __future__ import annotations

import asyncio
from typing import NoReturn

from orchestra.config import config, configure_logging
from orchestra.core.events import OrchestratorEvent, TaskCompleted, TaskFailed
from orchestra.executors.echo import EchoExecutor
from orchestra.orchestration.orchestrator import create_orchestrator


def _print_event(event: OrchestratorEvent) -> None:
    if isinstance(event, TaskCompleted):
        print(f"  task {event.task_id} completed in {event.duration:.3f}s")
    elif isinstance(event, TaskFailed):
        print(f"  task {event.task_id} failed: {event.error}")


async def main() -> None:
    configure_logging(config.log_level)
    orchestrator = create_orchestrator(EchoExecutor(delay=0.01), config=config)
    orchestrator.subscribe(_print_event, TaskCompleted, TaskFailed)

    print(f"Registered {len(orchestrator.list_agents())} agents")
    instance = await orchestrator.execute_template(
        "feature-implementation",
        {"feature": "dark mode toggle", "codebase": "webapp"},
    )
    print(f"Workflow {instance.instance_id} finished with status {instance.status.value}")
    for step_id, status in instance.step_status.items():
        print(f"  step {step_id}: {status.value}")

    stats = orchestrator.get_stats()
    print(f"Completed {stats.completed_tasks} tasks, {stats.failed_tasks} failed")
    await orchestrator.shutdown()


def run() -> NoReturn:
    asyncio.run(main())


if __name__ == "__main__":
    run()
