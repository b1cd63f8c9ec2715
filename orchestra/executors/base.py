"""Contract between the scheduler and whatever actually performs a task."""
from __future__ import annotations

import abc
from typing import Any, Awaitable, Callable

from orchestra.core.models import AgentInstance, TaskInstance, TaskResult


class TaskExecutor(abc.ABC):
    """Runs one task on behalf of one agent.

    The scheduler awaits ``execute`` once per assignment. Raising, returning
    an exception instance or returning a failed ``TaskResult`` all count as a
    task failure subject to retry.
    """

    @abc.abstractmethod
    async def execute(self, task: TaskInstance, agent: AgentInstance) -> Any:
        """Perform the task and return a ``TaskResult`` (or a bare output value)."""


class FunctionExecutor(TaskExecutor):
    """Adapts a coroutine function ``(task, agent) -> result`` to the executor contract."""

    def __init__(self, func: Callable[[TaskInstance, AgentInstance], Awaitable[Any]]) -> None:
        self._func = func

    async def execute(self, task: TaskInstance, agent: AgentInstance) -> Any:
        return await self._func(task, agent)


def normalize_result(value: Any) -> TaskResult:
    """Coerce whatever an executor returned into a ``TaskResult``."""
    if isinstance(value, TaskResult):
        return value
    if isinstance(value, BaseException):
        return TaskResult.failed(value)
    return TaskResult.ok(value)
