"""Event-driven metrics over agents, tasks and workflows."""
from __future__ import annotations

import time
from collections import Counter
from typing import Callable, Dict, List, Set

from orchestra.core.events import (
    AgentCreated,
    AgentDestroyed,
    AgentStatusChanged,
    EventBus,
    OrchestratorEvent,
    TaskAssigned,
    TaskCompleted,
    TaskCreated,
    TaskFailed,
    TaskQueued,
    TaskStarted,
    WorkflowCompleted,
    WorkflowFailed,
    WorkflowStarted,
)
from orchestra.core.models import AgentStatus, OrchestratorStats, TaskStatus


class StatsCollector:
    """Aggregates engine events into an ``OrchestratorStats`` snapshot.

    The collector only listens; it holds its own view of statuses and never
    touches the registry or the scheduler.
    """

    def __init__(self, events: EventBus, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._started = clock()
        self._agents: Dict[str, AgentStatus] = {}
        self._tasks: Dict[str, TaskStatus] = {}
        self._durations: List[float] = []
        self._running_workflows: Set[str] = set()
        self._unsubscribe = events.subscribe(self._on_event)

    def close(self) -> None:
        self._unsubscribe()

    def _on_event(self, event: OrchestratorEvent) -> None:
        if isinstance(event, AgentCreated):
            self._agents[event.agent_id] = AgentStatus.IDLE
        elif isinstance(event, AgentStatusChanged):
            self._agents[event.agent_id] = event.status
        elif isinstance(event, AgentDestroyed):
            self._agents.pop(event.agent_id, None)
        elif isinstance(event, TaskCreated):
            self._tasks[event.task_id] = event.status
        elif isinstance(event, TaskQueued):
            self._tasks[event.task_id] = TaskStatus.QUEUED
        elif isinstance(event, TaskAssigned):
            self._tasks[event.task_id] = TaskStatus.ASSIGNED
        elif isinstance(event, TaskStarted):
            self._tasks[event.task_id] = TaskStatus.IN_PROGRESS
        elif isinstance(event, TaskCompleted):
            self._tasks[event.task_id] = TaskStatus.COMPLETED
            if event.duration is not None:
                self._durations.append(event.duration)
        elif isinstance(event, TaskFailed):
            self._tasks[event.task_id] = TaskStatus.FAILED
        elif isinstance(event, WorkflowStarted):
            self._running_workflows.add(event.instance_id)
        elif isinstance(event, (WorkflowCompleted, WorkflowFailed)):
            self._running_workflows.discard(event.instance_id)

    def snapshot(self) -> OrchestratorStats:
        agents = Counter(status.value for status in self._agents.values())
        tasks = Counter(status.value for status in self._tasks.values())
        uptime = max(self._clock() - self._started, 0.0)
        completed = tasks[TaskStatus.COMPLETED.value]
        # Guard against a near-zero window right after start-up.
        window_minutes = max(uptime / 60.0, 1.0 / 60.0)
        return OrchestratorStats(
            agents_by_status={status.value: agents[status.value] for status in AgentStatus},
            tasks_by_status={status.value: tasks[status.value] for status in TaskStatus},
            active_agents=agents[AgentStatus.BUSY.value],
            idle_agents=agents[AgentStatus.IDLE.value],
            pending_tasks=tasks[TaskStatus.PENDING.value] + tasks[TaskStatus.QUEUED.value],
            running_tasks=tasks[TaskStatus.ASSIGNED.value] + tasks[TaskStatus.IN_PROGRESS.value],
            completed_tasks=completed,
            failed_tasks=tasks[TaskStatus.FAILED.value],
            running_workflows=len(self._running_workflows),
            avg_task_duration=(
                sum(self._durations) / len(self._durations) if self._durations else 0.0
            ),
            throughput=completed / window_minutes,
            uptime=uptime,
        )
