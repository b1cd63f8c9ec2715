"""Interpreter turning workflow definitions into scheduled tasks."""
from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from orchestra.core.errors import (
    DependencyUnmet,
    IterationLimitExceeded,
    StepFailed,
    UnknownWorkflow,
)
from orchestra.core.events import (
    EventBus,
    WorkflowCompleted,
    WorkflowFailed,
    WorkflowStarted,
    WorkflowStepCompleted,
    WorkflowStepFailed,
)
from orchestra.core.models import (
    Condition,
    ConditionalStep,
    LoopStep,
    ParallelStep,
    StepStatus,
    TaskInstance,
    TaskStatus,
    TaskStep,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowStatus,
    WorkflowStep,
    utcnow,
)
from orchestra.orchestration.scheduler import Scheduler

logger = logging.getLogger(__name__)

DEFAULT_MAX_LOOP_ITERATIONS = 10

_SATISFIED = (StepStatus.COMPLETED, StepStatus.SKIPPED)


def resolve_value(value: Any, context: Mapping[str, Any]) -> Any:
    """Replace ``$name`` strings with ``context[name]``, keeping the literal if absent."""
    if isinstance(value, str):
        if value.startswith("$"):
            return context.get(value[1:], value)
        return value
    if isinstance(value, Mapping):
        return {key: resolve_value(item, context) for key, item in value.items()}
    if isinstance(value, list):
        return [resolve_value(item, context) for item in value]
    return value


def resolve_input(task_input: Mapping[str, Any], context: Mapping[str, Any]) -> Dict[str, Any]:
    return {key: resolve_value(value, context) for key, value in task_input.items()}


def evaluate_condition(condition: Condition, context: Mapping[str, Any]) -> bool:
    """Evaluate a callable or ``[!]$name`` condition against the run context.

    A missing context key is falsy.
    """
    if callable(condition):
        return bool(condition(context))
    expression = condition.strip()
    negate = expression.startswith("!")
    if negate:
        expression = expression[1:].strip()
    key = expression[1:] if expression.startswith("$") else expression
    result = bool(context.get(key))
    return not result if negate else result


def task_context_key(task_id: str) -> str:
    """Context key under which a completed task's output is published."""
    return f"task_{task_id}"


@dataclasses.dataclass(slots=True)
class _RunState:
    """Per-run bookkeeping for step dependency waits."""

    # Step id -> ids of steps that may still be running alongside it.
    concurrent: Dict[str, FrozenSet[str]]
    settled: Dict[str, asyncio.Event] = dataclasses.field(default_factory=dict)
    # Step id -> dependency it is currently waiting for.
    waiting: Dict[str, str] = dataclasses.field(default_factory=dict)

    def event(self, step_id: str) -> asyncio.Event:
        return self.settled.setdefault(step_id, asyncio.Event())

    def waits_on(self, step_id: str, target: str) -> bool:
        """Whether ``step_id`` is transitively waiting for ``target``."""
        seen = set()
        while step_id in self.waiting and step_id not in seen:
            seen.add(step_id)
            step_id = self.waiting[step_id]
            if step_id == target:
                return True
        return False


def _children(step: WorkflowStep) -> Iterator[WorkflowStep]:
    if isinstance(step, ParallelStep):
        for branch in step.branches:
            yield from branch
    elif isinstance(step, ConditionalStep):
        yield step.then
        if step.otherwise is not None:
            yield step.otherwise
    elif isinstance(step, LoopStep):
        yield step.body


def _descendant_ids(step: WorkflowStep) -> Iterator[str]:
    for child in _children(step):
        yield child.id
        yield from _descendant_ids(child)


def _concurrency_map(
    steps: Iterable[WorkflowStep],
    concurrent: FrozenSet[str] = frozenset(),
    result: Optional[Dict[str, FrozenSet[str]]] = None,
) -> Dict[str, FrozenSet[str]]:
    """Map every step id to the steps of sibling parallel branches around it."""
    if result is None:
        result = {}
    for step in steps:
        result[step.id] = concurrent
        if isinstance(step, ParallelStep):
            branch_ids = [
                {item for member in branch for item in (member.id, *_descendant_ids(member))}
                for branch in step.branches
            ]
            for index, branch in enumerate(step.branches):
                others = set().union(*(ids for i, ids in enumerate(branch_ids) if i != index))
                _concurrency_map(branch, concurrent | others, result)
        else:
            _concurrency_map(_children(step), concurrent, result)
    return result


class WorkflowEngine:
    """Run workflow definitions step by step on top of the scheduler.

    Steps of a sequence run in declaration order. A step with ``depends_on``
    begins once every dependency has completed (or was skipped); a dependency
    running in a sibling parallel branch is waited for. A dependency that
    failed, was blocked, or cannot finish before the step (unknown id, a later
    step of the same sequence, an enclosing step) blocks it.
    Step failures are recorded on the instance and never raised to the caller.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        events: Optional[EventBus] = None,
        *,
        max_loop_iterations: int = DEFAULT_MAX_LOOP_ITERATIONS,
    ) -> None:
        self._scheduler = scheduler
        self._events = events or EventBus()
        self._max_loop_iterations = max_loop_iterations
        self._instances: Dict[str, WorkflowInstance] = {}
        self._runs: Dict[str, asyncio.Task[WorkflowInstance]] = {}
        self._states: Dict[str, _RunState] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def start_workflow(
        self,
        definition: WorkflowDefinition,
        input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowInstance:
        """Create a workflow instance and run it in the background."""
        instance = WorkflowInstance(definition=definition, input=dict(input or {}))
        self._instances[instance.instance_id] = instance
        self._runs[instance.instance_id] = asyncio.get_running_loop().create_task(
            self._run(instance), name=f"workflow:{instance.instance_id}"
        )
        return instance

    async def execute_workflow(
        self,
        definition: WorkflowDefinition,
        input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowInstance:
        """Run a workflow to completion and return its finished instance."""
        instance = self.start_workflow(definition, input)
        return await self.wait(instance.instance_id)

    async def wait(self, instance_id: str) -> WorkflowInstance:
        instance = self.get_instance(instance_id)
        run = self._runs.get(instance_id)
        if run is not None:
            await asyncio.shield(run)
        return instance

    def get_instance(self, instance_id: str) -> WorkflowInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise UnknownWorkflow(instance_id)
        return instance

    def list_instances(self) -> List[WorkflowInstance]:
        return list(self._instances.values())

    async def join(self) -> None:
        if self._runs:
            await asyncio.gather(*self._runs.values(), return_exceptions=True)

    # ------------------------------------------------------------------
    # Workflow run
    # ------------------------------------------------------------------

    async def _run(self, instance: WorkflowInstance) -> WorkflowInstance:
        definition = instance.definition
        instance.status = WorkflowStatus.RUNNING
        logger.info("Workflow %s started (instance %s)", definition.id, instance.instance_id)
        self._events.emit(
            WorkflowStarted(instance_id=instance.instance_id, workflow_id=definition.id)
        )

        missing = [key for key in definition.input_schema if key not in instance.input]
        if missing:
            logger.warning(
                "Workflow %s started without inputs: %s", definition.id, ", ".join(missing)
            )

        self._states[instance.instance_id] = _RunState(
            concurrent=_concurrency_map(definition.steps)
        )
        try:
            errors = await self._run_sequence(instance, definition.steps)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Workflow %s aborted", instance.instance_id)
            errors = [exc]
        finally:
            self._states.pop(instance.instance_id, None)

        instance.output = {
            task_id: task.output
            for task_id, task in instance.tasks.items()
            if task.status is TaskStatus.COMPLETED
        }
        instance.completed_at = utcnow()
        if errors:
            instance.status = WorkflowStatus.FAILED
            instance.error = errors[0]
            logger.error("Workflow %s failed: %s", instance.instance_id, instance.error)
            self._events.emit(
                WorkflowFailed(instance_id=instance.instance_id, error=instance.error)
            )
        else:
            instance.status = WorkflowStatus.COMPLETED
            logger.info("Workflow %s completed", instance.instance_id)
            self._events.emit(
                WorkflowCompleted(instance_id=instance.instance_id, output=instance.output)
            )
        return instance

    async def _run_sequence(
        self, instance: WorkflowInstance, steps: Iterable[WorkflowStep]
    ) -> List[BaseException]:
        errors: List[BaseException] = []
        for step in steps:
            error = await self._run_step(instance, step)
            if error is not None:
                errors.append(error)
        return errors

    async def _run_step(
        self, instance: WorkflowInstance, step: WorkflowStep
    ) -> Optional[BaseException]:
        state = self._states[instance.instance_id]
        state.event(step.id).clear()
        instance.step_status[step.id] = StepStatus.PENDING

        for dependency in step.depends_on:
            status = await self._await_dependency(instance, state, step, dependency)
            if status not in _SATISFIED:
                error = DependencyUnmet(step.id, dependency)
                self._record_failure(instance, step, StepStatus.BLOCKED, error)
                self._settle_unrun(instance, step, StepStatus.BLOCKED)
                return error

        instance.step_status[step.id] = StepStatus.RUNNING
        try:
            error = await self._dispatch(instance, step)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Step %s raised", step.id)
            error = exc

        if error is not None:
            self._record_failure(instance, step, StepStatus.FAILED, error)
            for step_id in _descendant_ids(step):
                if not state.event(step_id).is_set():
                    instance.step_status[step_id] = StepStatus.BLOCKED
                    state.event(step_id).set()
            state.event(step.id).set()
            return error

        instance.step_status[step.id] = StepStatus.COMPLETED
        if step.id not in instance.completed_steps:
            instance.completed_steps.append(step.id)
        state.event(step.id).set()
        self._events.emit(
            WorkflowStepCompleted(instance_id=instance.instance_id, step_id=step.id)
        )
        return None

    async def _await_dependency(
        self,
        instance: WorkflowInstance,
        state: _RunState,
        step: WorkflowStep,
        dependency: str,
    ) -> Optional[StepStatus]:
        """Wait for ``dependency`` to settle and return its final status.

        Returns None when the dependency can never settle before ``step`` runs.
        """
        event = state.event(dependency)
        if event.is_set():
            return instance.step_status.get(dependency)
        if dependency not in state.concurrent.get(step.id, frozenset()):
            return None
        if state.waits_on(dependency, step.id):
            logger.warning("Steps %s and %s wait on each other", step.id, dependency)
            return None
        logger.debug("Step %s waiting for %s", step.id, dependency)
        state.waiting[step.id] = dependency
        try:
            await event.wait()
        finally:
            state.waiting.pop(step.id, None)
        return instance.step_status.get(dependency)

    def _settle_unrun(
        self, instance: WorkflowInstance, step: WorkflowStep, status: StepStatus
    ) -> None:
        """Give ``step`` and every step nested in it a final status without running them."""
        state = self._states[instance.instance_id]
        instance.step_status[step.id] = status
        state.event(step.id).set()
        for step_id in _descendant_ids(step):
            instance.step_status[step_id] = status
            state.event(step_id).set()

    def _record_failure(
        self,
        instance: WorkflowInstance,
        step: WorkflowStep,
        status: StepStatus,
        error: BaseException,
    ) -> None:
        instance.step_status[step.id] = status
        instance.step_errors[step.id] = error
        logger.warning("Step %s %s: %s", step.id, status.value, error)
        self._events.emit(
            WorkflowStepFailed(instance_id=instance.instance_id, step_id=step.id, error=error)
        )

    async def _dispatch(
        self, instance: WorkflowInstance, step: WorkflowStep
    ) -> Optional[BaseException]:
        if isinstance(step, TaskStep):
            return await self._run_task_step(instance, step)
        if isinstance(step, ParallelStep):
            return await self._run_parallel_step(instance, step)
        if isinstance(step, ConditionalStep):
            return await self._run_conditional_step(instance, step)
        if isinstance(step, LoopStep):
            return await self._run_loop_step(instance, step)
        raise TypeError(f"Unsupported workflow step: {type(step).__name__}")

    # ------------------------------------------------------------------
    # Step kinds
    # ------------------------------------------------------------------

    async def _run_task_step(
        self, instance: WorkflowInstance, step: TaskStep
    ) -> Optional[BaseException]:
        scoped = {
            definition.id: self._scoped_task_id(instance, definition.id)
            for definition in step.tasks
        }

        # Sibling ids map to this run's tasks; anything else must be an earlier task.
        dependencies: Dict[str, Tuple[str, ...]] = {}
        waits_on_siblings: Dict[str, bool] = {}
        for definition in step.tasks:
            resolved = []
            for dependency in definition.depends_on:
                if dependency in scoped:
                    resolved.append(scoped[dependency])
                elif dependency in instance.tasks:
                    resolved.append(instance.tasks[dependency].task_id)
                else:
                    return StepFailed(step.id, [DependencyUnmet(definition.id, dependency)])
            dependencies[definition.id] = tuple(resolved)
            waits_on_siblings[definition.id] = any(dep in scoped for dep in definition.depends_on)

        created: List[Tuple[str, TaskInstance]] = []
        for definition in step.tasks:
            prepare = None
            if waits_on_siblings[definition.id]:
                # Sibling outputs only exist once the dependencies completed.
                prepare = functools.partial(self._resolve_late, instance, definition.input)
            task = self._scheduler.create_task(
                dataclasses.replace(
                    definition,
                    id=scoped[definition.id],
                    input=resolve_input(definition.input, instance.input),
                    depends_on=dependencies[definition.id],
                    parent_id=instance.instance_id,
                ),
                prepare=prepare,
            )
            instance.tasks[definition.id] = task
            created.append((definition.id, task))

        for _, task in created:
            self._scheduler.queue_task(task.task_id)
        self._scheduler.schedule()

        finished = await asyncio.gather(
            *(self._await_task(instance, name, task) for name, task in created)
        )
        errors = [task.error for task in finished if task.status is TaskStatus.FAILED]
        if errors:
            return StepFailed(step.id, errors)
        return None

    @staticmethod
    def _resolve_late(
        instance: WorkflowInstance, raw_input: Mapping[str, Any], task: TaskInstance
    ) -> None:
        context = dict(instance.input)
        for name, other in instance.tasks.items():
            if other.status is TaskStatus.COMPLETED:
                context[task_context_key(name)] = other.output
        task.definition = dataclasses.replace(
            task.definition, input=resolve_input(raw_input, context)
        )

    async def _await_task(
        self, instance: WorkflowInstance, name: str, task: TaskInstance
    ) -> TaskInstance:
        task = await self._scheduler.wait(task.task_id)
        if task.status is TaskStatus.COMPLETED:
            instance.input[task_context_key(name)] = task.output
        return task

    async def _run_parallel_step(
        self, instance: WorkflowInstance, step: ParallelStep
    ) -> Optional[BaseException]:
        # Wait for every branch; a failing branch never cancels its siblings.
        results = await asyncio.gather(
            *(self._run_sequence(instance, branch) for branch in step.branches)
        )
        errors = [error for branch_errors in results for error in branch_errors]
        if errors:
            return StepFailed(step.id, errors)
        return None

    async def _run_conditional_step(
        self, instance: WorkflowInstance, step: ConditionalStep
    ) -> Optional[BaseException]:
        if evaluate_condition(step.condition, instance.input):
            chosen, skipped = step.then, step.otherwise
        else:
            chosen, skipped = step.otherwise, step.then

        if skipped is not None:
            self._settle_unrun(instance, skipped, StepStatus.SKIPPED)
        if chosen is None:
            return None

        error = await self._run_step(instance, chosen)
        if error is not None:
            return StepFailed(step.id, [error])
        return None

    async def _run_loop_step(
        self, instance: WorkflowInstance, step: LoopStep
    ) -> Optional[BaseException]:
        limit = step.max_iterations
        if limit is None:
            limit = self._max_loop_iterations
        for iteration in range(limit):
            instance.input[f"{step.id}_iteration"] = iteration
            error = await self._run_step(instance, step.body)
            if error is not None:
                return StepFailed(step.id, [error])
            if evaluate_condition(step.until, instance.input):
                return None
        return IterationLimitExceeded(step.id, limit)

    def _scoped_task_id(self, instance: WorkflowInstance, task_id: str) -> str:
        base = f"{instance.instance_id}:{task_id}"
        candidate, attempt = base, 1
        while candidate in self._scheduler.store:
            attempt += 1
            candidate = f"{base}#{attempt}"
        return candidate
