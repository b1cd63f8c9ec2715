"""Priority and dependency aware task scheduler.

Task state machine::

    pending     -> queued        (queue_task)
    queued      -> assigned      (try_assign found an idle agent)
    assigned    -> in_progress   (the executor call begins)
    in_progress -> completed     (executor succeeded)
    in_progress -> queued        (executor failed, retries left)
    in_progress -> failed        (executor failed, retries exhausted)
    pending     -> failed        (a dependency failed permanently)
    queued      -> failed        (a dependency failed permanently)
    assigned    -> failed        (agent forcibly unregistered)

Every transition is a synchronous method call, so transitions never interleave
on the event loop. The only suspension point is the await on the executor.
"""
from __future__ import annotations

import asyncio
import bisect
import functools
import itertools
import logging
from typing import Callable, Dict, FrozenSet, List, Optional, Tuple

from orchestra.agents.registry import AgentRegistry
from orchestra.core.errors import (
    DependencyUnmet,
    DuplicateTask,
    ExecutorError,
    InvalidTransition,
    RetriesExhausted,
    UnknownTask,
)
from orchestra.core.events import (
    EventBus,
    TaskAssigned,
    TaskCompleted,
    TaskCreated,
    TaskFailed,
    TaskQueued,
    TaskRetried,
    TaskStarted,
)
from orchestra.core.models import (
    AgentInstance,
    TaskDefinition,
    TaskInstance,
    TaskResult,
    TaskStatus,
    utcnow,
)
from orchestra.executors.base import TaskExecutor, normalize_result

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3

VALID_TRANSITIONS: Dict[TaskStatus, FrozenSet[TaskStatus]] = {
    TaskStatus.PENDING: frozenset([TaskStatus.QUEUED, TaskStatus.FAILED]),
    TaskStatus.QUEUED: frozenset([TaskStatus.ASSIGNED, TaskStatus.FAILED]),
    TaskStatus.ASSIGNED: frozenset([TaskStatus.IN_PROGRESS, TaskStatus.FAILED]),
    TaskStatus.IN_PROGRESS: frozenset(
        [TaskStatus.COMPLETED, TaskStatus.QUEUED, TaskStatus.FAILED]
    ),
    # Terminal states: no outgoing transitions
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


class TaskStore:
    """In-memory store of task instances keyed by task id."""

    def __init__(self) -> None:
        self._tasks: Dict[str, TaskInstance] = {}

    def add(self, definition: TaskDefinition) -> TaskInstance:
        if definition.id in self._tasks:
            raise DuplicateTask(definition.id)
        task = TaskInstance(definition=definition)
        self._tasks[definition.id] = task
        return task

    def get(self, task_id: str) -> TaskInstance:
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(task_id)
        return task

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[TaskInstance]:
        if status is None:
            return list(self._tasks.values())
        return [task for task in self._tasks.values() if task.status is status]

    def dependents(self, task_id: str) -> List[TaskInstance]:
        """Tasks that list ``task_id`` in their ``depends_on``."""
        return [
            task for task in self._tasks.values() if task_id in task.definition.depends_on
        ]


class Scheduler:
    """Match queued tasks with idle, role-compatible agents and drive execution."""

    def __init__(
        self,
        *,
        registry: AgentRegistry,
        store: TaskStore,
        executor: TaskExecutor,
        events: Optional[EventBus] = None,
        default_max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self._registry = registry
        self._store = store
        self._executor = executor
        self._events = events or EventBus()
        self._default_max_retries = default_max_retries
        # Kept sorted by (-weight, enqueue sequence, task id).
        self._queue: List[Tuple[int, int, str]] = []
        self._sequence = itertools.count()
        self._runners: Dict[str, asyncio.Task[None]] = {}
        self._waiters: Dict[str, List[asyncio.Future[TaskInstance]]] = {}
        # Called once on a task right before it is assigned.
        self._preparers: Dict[str, Callable[[TaskInstance], None]] = {}

    @property
    def store(self) -> TaskStore:
        return self._store

    # ------------------------------------------------------------------
    # Creation and queueing
    # ------------------------------------------------------------------

    def create_task(
        self,
        definition: TaskDefinition,
        *,
        prepare: Optional[Callable[[TaskInstance], None]] = None,
    ) -> TaskInstance:
        """Store a new pending task.

        ``prepare`` runs when the task is about to be assigned, after all of its
        dependencies have completed.
        """
        task = self._store.add(definition)
        if prepare is not None:
            self._preparers[task.task_id] = prepare
        logger.debug("Created task %s (%s)", task.task_id, definition.priority.value)
        self._events.emit(TaskCreated(task_id=task.task_id))
        return task

    def queue_task(self, task_id: str) -> TaskInstance:
        task = self._store.get(task_id)
        self._transition(task, TaskStatus.QUEUED)
        self._enqueue(task)
        return task

    def submit(self, definition: TaskDefinition) -> TaskInstance:
        """Create, queue and try to schedule a task in one call."""
        task = self.create_task(definition)
        self.queue_task(task.task_id)
        self.schedule()
        return task

    def queued_task_ids(self) -> List[str]:
        """Queued task ids in the order they would be considered for assignment."""
        return [task_id for _, _, task_id in self._queue]

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def try_assign(self) -> Optional[TaskInstance]:
        """Assign the best eligible queued task to an available agent.

        Tasks whose dependencies are not all completed are skipped and stay
        queued; tasks with a permanently failed dependency are failed.
        """
        blocked: List[Tuple[TaskInstance, str]] = []
        chosen: Optional[Tuple[Tuple[int, int, str], TaskInstance, AgentInstance]] = None

        for entry in self._queue:
            task = self._store.get(entry[2])
            dependency, status = self._first_unmet_dependency(task)
            if status is TaskStatus.FAILED:
                blocked.append((task, dependency))
                continue
            if dependency is not None:
                logger.debug("%s", DependencyUnmet(task.task_id, dependency))
                continue
            agent = self._find_agent(task.definition.required_role)
            if agent is None:
                continue
            chosen = (entry, task, agent)
            break

        for task, dependency in blocked:
            if task.status is TaskStatus.QUEUED:
                self._fail(task, DependencyUnmet(task.task_id, dependency))

        if chosen is None:
            return None

        entry, task, agent = chosen
        loop = asyncio.get_running_loop()
        prepare = self._preparers.pop(task.task_id, None)
        if prepare is not None:
            prepare(task)
        self._queue.remove(entry)
        self._transition(task, TaskStatus.ASSIGNED)
        task.assigned_agent = agent.agent_id
        self._registry.assign(agent.agent_id, task.task_id)
        logger.info("Assigned task %s to agent %s", task.task_id, agent.agent_id)
        self._events.emit(TaskAssigned(task_id=task.task_id, agent_id=agent.agent_id))

        runner = loop.create_task(self._run(task, agent), name=f"task:{task.task_id}")
        self._runners[task.task_id] = runner
        runner.add_done_callback(functools.partial(self._forget_runner, task.task_id))
        return task

    def schedule(self) -> List[TaskInstance]:
        """Assign queued tasks until nothing else can be assigned."""
        assigned: List[TaskInstance] = []
        while True:
            task = self.try_assign()
            if task is None:
                return assigned
            assigned.append(task)

    def _find_agent(self, role: str) -> Optional[AgentInstance]:
        agent = self._registry.find_available(role)
        if agent is None:
            return None
        if self._registry.busy_count(role) >= self._registry.role_capacity(role):
            return None
        return agent

    def _first_unmet_dependency(
        self, task: TaskInstance
    ) -> Tuple[Optional[str], Optional[TaskStatus]]:
        for dependency in task.definition.depends_on:
            if dependency not in self._store:
                return dependency, None
            status = self._store.get(dependency).status
            if status is not TaskStatus.COMPLETED:
                return dependency, status
        return None, None

    # ------------------------------------------------------------------
    # Execution and results
    # ------------------------------------------------------------------

    async def _run(self, task: TaskInstance, agent: AgentInstance) -> None:
        if task.status is not TaskStatus.ASSIGNED:
            return
        self._transition(task, TaskStatus.IN_PROGRESS)
        task.started_at = utcnow()
        self._events.emit(TaskStarted(task_id=task.task_id, agent_id=agent.agent_id))

        try:
            result = normalize_result(await self._executor.execute(task, agent))
        except Exception as exc:  # noqa: BLE001
            result = TaskResult.failed(exc)

        if task.status is not TaskStatus.IN_PROGRESS or task.assigned_agent != agent.agent_id:
            logger.warning("Dropping stale result for task %s", task.task_id)
            return
        self.report_result(task.task_id, result)

    def report_result(self, task_id: str, result: TaskResult) -> TaskInstance:
        """Record the outcome of an in-progress task and reschedule."""
        task = self._store.get(task_id)
        agent_id = task.assigned_agent

        if result.success:
            self._transition(task, TaskStatus.COMPLETED)
            task.output = result.output
            task.error = None
            task.completed_at = utcnow()
            self._release(agent_id, completed=True)
            logger.info("Task %s completed", task_id)
            self._events.emit(
                TaskCompleted(task_id=task_id, output=task.output, duration=task.duration)
            )
            self._settle(task)
        else:
            error = result.error or RuntimeError("executor reported failure")
            if not isinstance(error, ExecutorError):
                error = ExecutorError(task_id, error)
            max_retries = task.definition.max_retries
            if max_retries is None:
                max_retries = self._default_max_retries

            if task.retries < max_retries:
                self._transition(task, TaskStatus.QUEUED)
                task.retries += 1
                task.error = error
                task.assigned_agent = None
                self._release(agent_id)
                logger.warning(
                    "Task %s failed (attempt %d of %d), requeueing: %s",
                    task_id,
                    task.retries,
                    max_retries + 1,
                    error.cause,
                )
                self._events.emit(TaskRetried(task_id=task_id, retries=task.retries, error=error))
                self._enqueue(task)
            else:
                self._release(agent_id, failed=True)
                self._fail(task, RetriesExhausted(task_id, task.retries + 1, error))

        self.schedule()
        return task

    async def wait(self, task_id: str) -> TaskInstance:
        """Wait until the task reaches a terminal state and return it."""
        task = self._store.get(task_id)
        if task.status.is_terminal:
            return task
        future: asyncio.Future[TaskInstance] = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(task_id, []).append(future)
        return await future

    def abandon_agent(self, agent_id: str) -> Optional[TaskInstance]:
        """Fail the agent's current task without retry and stop its executor call."""
        agent = self._registry.get(agent_id)
        if agent.current_task_id is None:
            return None
        task = self._store.get(agent.current_task_id)
        runner = self._runners.pop(task.task_id, None)
        if runner is not None:
            runner.cancel()
        self._release(agent_id, failed=True)
        self._fail(
            task,
            ExecutorError(task.task_id, RuntimeError(f"agent '{agent_id}' was unregistered")),
        )
        return task

    async def join(self) -> None:
        """Wait for every in-flight executor call to settle."""
        while self._runners:
            await asyncio.gather(*list(self._runners.values()), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _transition(self, task: TaskInstance, status: TaskStatus) -> None:
        if status not in VALID_TRANSITIONS[task.status]:
            raise InvalidTransition(task.task_id, task.status.value, status.value)
        task.status = status

    def _enqueue(self, task: TaskInstance) -> None:
        entry = (-task.definition.priority.weight, next(self._sequence), task.task_id)
        bisect.insort(self._queue, entry)
        self._events.emit(TaskQueued(task_id=task.task_id, retries=task.retries))

    def _release(self, agent_id: Optional[str], **outcome: bool) -> None:
        if agent_id is not None and agent_id in self._registry:
            self._registry.release(agent_id, **outcome)

    def _fail(self, task: TaskInstance, error: BaseException) -> None:
        if task.status is TaskStatus.QUEUED:
            self._queue = [entry for entry in self._queue if entry[2] != task.task_id]
        self._transition(task, TaskStatus.FAILED)
        task.error = error
        task.completed_at = utcnow()
        logger.error("Task %s failed: %s", task.task_id, error)
        self._events.emit(TaskFailed(task_id=task.task_id, error=error))
        self._settle(task)

        for dependent in self._store.dependents(task.task_id):
            if dependent.status in (TaskStatus.PENDING, TaskStatus.QUEUED):
                self._fail(dependent, DependencyUnmet(dependent.task_id, task.task_id))

    def _settle(self, task: TaskInstance) -> None:
        self._preparers.pop(task.task_id, None)
        for future in self._waiters.pop(task.task_id, []):
            if not future.done():
                future.set_result(task)

    def _forget_runner(self, task_id: str, runner: asyncio.Task[None]) -> None:
        if self._runners.get(task_id) is runner:
            del self._runners[task_id]
