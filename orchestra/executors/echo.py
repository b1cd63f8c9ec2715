"""Executor that echoes tasks back, used for demos and dry runs."""
from __future__ import annotations

import asyncio
from typing import Any, Dict

from orchestra.core.models import AgentInstance, TaskInstance, TaskResult
from orchestra.executors.base import TaskExecutor


class EchoExecutor(TaskExecutor):
    """Completes every task with a summary of what it was asked to do."""

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay

    async def execute(self, task: TaskInstance, agent: AgentInstance) -> TaskResult:
        if self.delay:
            await asyncio.sleep(self.delay)  # Simulate work
        output: Dict[str, Any] = {
            "echo": f"{agent.definition.name} handled {task.definition.name}",
            "input": dict(task.definition.input),
        }
        return TaskResult.ok(output)
