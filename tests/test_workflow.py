"""Tests for workflow interpretation: sequencing, branching, loops and templates."""
from __future__ import annotations

from typing import List, Tuple

import pytest

from orchestra.agents.defaults import create_custom_agent
from orchestra.core.errors import (
    DependencyUnmet,
    IterationLimitExceeded,
    StepFailed,
    UnknownWorkflow,
)
from orchestra.core.events import WorkflowStepFailed
from orchestra.core.models import (
    ConditionalStep,
    LoopStep,
    ParallelStep,
    StepStatus,
    TaskDefinition,
    TaskStatus,
    TaskStep,
    WorkflowDefinition,
    WorkflowStatus,
)
from orchestra.executors.base import FunctionExecutor
from orchestra.executors.echo import EchoExecutor
from orchestra.orchestration.orchestrator import Orchestrator, create_orchestrator
from orchestra.orchestration.templates import get_workflow_template, list_workflow_templates
from orchestra.orchestration.workflow import evaluate_condition, resolve_input


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def step(
    step_id: str,
    *,
    fail: bool = False,
    depends_on: Tuple[str, ...] = (),
    **task,
) -> TaskStep:
    """A single-task step run by the ``worker`` role; failing tasks are never retried."""
    return TaskStep(
        id=step_id,
        depends_on=depends_on,
        tasks=[
            TaskDefinition(
                id=f"{step_id}-task",
                type="fail" if fail else "work",
                name=step_id,
                required_role="worker",
                max_retries=0,
                **task,
            )
        ],
    )


def worker_orchestrator(calls: List[str]) -> Orchestrator:
    async def execute(task, agent):
        calls.append(task.task_id)
        if task.definition.type == "fail":
            raise RuntimeError(f"{task.definition.name} broke")
        return {"value": task.definition.name}

    orchestrator = Orchestrator(executor=FunctionExecutor(execute))
    for agent_id in ("w1", "w2"):
        orchestrator.register_agent(
            create_custom_agent(agent_id, agent_id, "", role="worker", max_concurrency=5)
        )
    return orchestrator


def workflow(*steps) -> WorkflowDefinition:
    return WorkflowDefinition(id="test-flow", name="Test Flow", steps=list(steps))


def test_resolve_input_keeps_unknown_references() -> None:
    context = {"feature": "search", "count": 3}
    resolved = resolve_input(
        {"a": "$feature", "b": "$missing", "c": 7, "d": ["$count", "plain"], "e": {"f": "$feature"}},
        context,
    )

    assert resolved == {
        "a": "search",
        "b": "$missing",
        "c": 7,
        "d": [3, "plain"],
        "e": {"f": "search"},
    }


def test_evaluate_condition_forms() -> None:
    context = {"deploy": True, "empty": ""}

    assert evaluate_condition("$deploy", context)
    assert not evaluate_condition("!$deploy", context)
    assert not evaluate_condition("$empty", context)
    assert not evaluate_condition("$absent", context)
    assert evaluate_condition("!$absent", context)
    assert evaluate_condition(lambda ctx: ctx["deploy"], context)


@pytest.mark.anyio
async def test_sequential_steps_pass_outputs_forward() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        step("first"),
        step(
            "second",
            depends_on=("first",),
            input={"prev": "$task_first-task", "name": "$feature", "other": "$missing"},
        ),
    )

    instance = await orchestrator.execute_workflow(definition, {"feature": "search"})

    assert instance.status is WorkflowStatus.COMPLETED
    assert instance.completed_steps == ["first", "second"]
    first = instance.tasks["first-task"]
    second = instance.tasks["second-task"]
    assert first.task_id == f"{instance.instance_id}:first-task"
    assert first.definition.parent_id == instance.instance_id
    assert second.definition.input == {
        "prev": {"value": "first"},
        "name": "search",
        "other": "$missing",
    }
    assert calls == [first.task_id, second.task_id]
    assert instance.output == {
        "first-task": {"value": "first"},
        "second-task": {"value": "second"},
    }
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_task_dependencies_within_and_across_steps() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        step("setup"),
        TaskStep(
            id="build",
            tasks=[
                TaskDefinition(
                    id="package",
                    type="work",
                    name="package",
                    required_role="worker",
                    depends_on=("compile", "setup-task"),
                ),
                TaskDefinition(id="compile", type="work", name="compile", required_role="worker"),
            ],
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.COMPLETED
    package = instance.tasks["package"]
    assert package.definition.depends_on == (
        instance.tasks["compile"].task_id,
        instance.tasks["setup-task"].task_id,
    )
    assert calls.index(instance.tasks["compile"].task_id) < calls.index(package.task_id)
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_unknown_task_dependency_fails_step() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        TaskStep(
            id="only",
            tasks=[
                TaskDefinition(
                    id="t",
                    type="work",
                    name="t",
                    required_role="worker",
                    depends_on=("nowhere",),
                )
            ],
        )
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.FAILED
    assert isinstance(instance.error, StepFailed)
    assert isinstance(instance.error.errors[0], DependencyUnmet)
    assert instance.tasks == {}


@pytest.mark.anyio
async def test_blocked_step_does_not_stop_independent_steps() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    failures: List[WorkflowStepFailed] = []
    orchestrator.subscribe(failures.append, WorkflowStepFailed)
    definition = workflow(
        step("a", fail=True),
        step("b", depends_on=("a",)),
        step("c"),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.FAILED
    assert instance.step_status == {
        "a": StepStatus.FAILED,
        "b": StepStatus.BLOCKED,
        "c": StepStatus.COMPLETED,
    }
    assert isinstance(instance.step_errors["b"], DependencyUnmet)
    assert isinstance(instance.error, StepFailed)
    assert instance.error.step_id == "a"
    assert [event.step_id for event in failures] == ["a", "b"]
    assert "b-task" not in instance.tasks
    assert instance.output == {"c-task": {"value": "c"}}
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_parallel_step_waits_for_all_branches() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        ParallelStep(
            id="par",
            branches=[
                [step("s1", fail=True), step("s2", depends_on=("s1",))],
                [step("s3")],
            ],
        ),
        step("after"),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["s1"] is StepStatus.FAILED
    assert instance.step_status["s2"] is StepStatus.BLOCKED
    assert instance.step_status["s3"] is StepStatus.COMPLETED
    assert instance.step_status["par"] is StepStatus.FAILED
    assert instance.step_status["after"] is StepStatus.COMPLETED
    assert instance.status is WorkflowStatus.FAILED

    error = instance.step_errors["par"]
    assert isinstance(error, StepFailed)
    assert len(error.errors) == 2
    assert isinstance(error.errors[1], DependencyUnmet)
    assert instance.tasks["s3-task"].status is TaskStatus.COMPLETED
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_conditional_step_takes_one_branch() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        ConditionalStep(
            id="gate",
            condition="$deploy",
            then=step("ship"),
            otherwise=step("hold"),
        ),
        step("report", depends_on=("ship",)),
    )

    instance = await orchestrator.execute_workflow(definition, {"deploy": False})

    assert instance.step_status["gate"] is StepStatus.COMPLETED
    assert instance.step_status["hold"] is StepStatus.COMPLETED
    assert instance.step_status["ship"] is StepStatus.SKIPPED
    # A skipped step still satisfies its dependents.
    assert instance.step_status["report"] is StepStatus.COMPLETED
    assert "ship-task" not in instance.tasks
    assert instance.status is WorkflowStatus.COMPLETED
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_conditional_without_else_branch() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        ConditionalStep(id="gate", condition=lambda ctx: ctx.get("deploy"), then=step("ship")),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.COMPLETED
    assert instance.step_status["gate"] is StepStatus.COMPLETED
    assert instance.step_status["ship"] is StepStatus.SKIPPED
    assert "ship-task" not in instance.tasks
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_loop_runs_until_condition_holds() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        LoopStep(
            id="retry-loop",
            body=step("attempt"),
            until=lambda ctx: ctx["retry-loop_iteration"] >= 1,
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.COMPLETED
    assert len(calls) == 2
    assert calls[1] == f"{instance.instance_id}:attempt-task#2"
    assert instance.input["retry-loop_iteration"] == 1
    assert instance.tasks["attempt-task"].task_id == calls[1]
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_loop_stops_at_iteration_limit() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        LoopStep(id="forever", body=step("spin"), until="$never", max_iterations=3),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.status is WorkflowStatus.FAILED
    assert len(calls) == 3
    error = instance.step_errors["forever"]
    assert isinstance(error, IterationLimitExceeded)
    assert error.limit == 3
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_loop_with_zero_iterations_never_runs_body() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        LoopStep(id="never", body=step("spin"), until="$done", max_iterations=0),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert calls == []
    error = instance.step_errors["never"]
    assert isinstance(error, IterationLimitExceeded)
    assert error.limit == 0
    assert instance.status is WorkflowStatus.FAILED
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_start_workflow_runs_in_background() -> None:
    orchestrator = worker_orchestrator([])
    instance = orchestrator.start_workflow(workflow(step("only")))

    assert orchestrator.get_workflow(instance.instance_id) is instance
    assert orchestrator.list_workflows() == [instance]

    finished = await orchestrator.workflows.wait(instance.instance_id)
    assert finished.status is WorkflowStatus.COMPLETED
    assert finished.completed_at is not None

    with pytest.raises(UnknownWorkflow):
        orchestrator.get_workflow("missing")
    await orchestrator.shutdown()


def test_bundled_templates() -> None:
    ids = [template["id"] for template in list_workflow_templates()]

    assert ids == ["code-review", "feature-implementation", "bug-fix", "refactoring"]
    assert get_workflow_template("bug-fix").name == "Bug Fix"
    assert get_workflow_template("nope") is None


@pytest.mark.anyio
async def test_feature_implementation_template_runs_end_to_end() -> None:
    orchestrator = create_orchestrator(EchoExecutor())

    instance = await orchestrator.execute_template(
        "feature-implementation",
        {"feature": "dark mode", "codebase": "webapp"},
    )

    assert instance.status is WorkflowStatus.COMPLETED
    assert instance.completed_steps == ["plan", "implement", "test", "review", "document"]
    plan = instance.tasks["create-plan"]
    code = instance.tasks["write-code"]
    assert plan.definition.input == {"feature": "dark mode", "codebase": "webapp"}
    assert plan.assigned_agent == "planner"
    assert code.definition.input["plan"] == plan.output
    # Resolved once write-tests has completed.
    tests = instance.tasks["write-tests"]
    assert instance.tasks["run-tests"].definition.input == {"tests": tests.output}
    assert set(instance.output) == {
        "create-plan",
        "write-code",
        "write-tests",
        "run-tests",
        "review-code",
        "write-docs",
    }
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_code_review_template_runs_parallel_reviews() -> None:
    orchestrator = create_orchestrator(EchoExecutor())

    instance = await orchestrator.execute_template("code-review", {"files": ["app.py"]})

    assert instance.status is WorkflowStatus.COMPLETED
    assert instance.step_status["review"] is StepStatus.COMPLETED
    summary = instance.tasks["create-summary"]
    assert summary.definition.input["security"] == instance.tasks["check-security"].output
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_unknown_template_is_rejected() -> None:
    orchestrator = create_orchestrator(EchoExecutor())

    with pytest.raises(UnknownWorkflow):
        await orchestrator.execute_template("nope")


@pytest.mark.anyio
async def test_failing_branch_does_not_cancel_sibling_branch() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        ParallelStep(
            id="par",
            branches=[[step("s1"), step("s2")], [step("s3", fail=True)]],
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["s1"] is StepStatus.COMPLETED
    assert instance.step_status["s2"] is StepStatus.COMPLETED
    assert instance.step_status["s3"] is StepStatus.FAILED
    assert instance.step_status["par"] is StepStatus.FAILED
    assert instance.status is WorkflowStatus.FAILED
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_workflow_input_interpolation() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        step("known", input={"target": "$feature"}),
        step("unknown", input={"target": "$missing"}),
    )

    instance = await orchestrator.execute_workflow(definition, {"feature": "auth"})

    assert instance.tasks["known-task"].definition.input == {"target": "auth"}
    assert instance.tasks["unknown-task"].definition.input == {"target": "$missing"}
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_step_waits_for_dependency_in_sibling_branch() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(
        ParallelStep(
            id="par",
            branches=[[step("s1")], [step("s2", depends_on=("s1",))]],
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["s1"] is StepStatus.COMPLETED
    assert instance.step_status["s2"] is StepStatus.COMPLETED
    assert instance.step_status["par"] is StepStatus.COMPLETED
    assert instance.status is WorkflowStatus.COMPLETED
    assert [call.split(":")[-1] for call in calls] == ["s1-task", "s2-task"]
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_step_blocked_when_sibling_branch_dependency_fails() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        ParallelStep(
            id="par",
            branches=[[step("s1", fail=True)], [step("s2", depends_on=("s1",))]],
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["s1"] is StepStatus.FAILED
    assert instance.step_status["s2"] is StepStatus.BLOCKED
    assert isinstance(instance.step_errors["s2"], DependencyUnmet)
    assert "s2-task" not in instance.tasks
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_dependency_on_later_step_blocks() -> None:
    calls: List[str] = []
    orchestrator = worker_orchestrator(calls)
    definition = workflow(step("early", depends_on=("late",)), step("late"))

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["early"] is StepStatus.BLOCKED
    assert instance.step_status["late"] is StepStatus.COMPLETED
    assert len(calls) == 1
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_mutually_dependent_branches_do_not_hang() -> None:
    orchestrator = worker_orchestrator([])
    definition = workflow(
        ParallelStep(
            id="par",
            branches=[
                [step("s1", depends_on=("s2",))],
                [step("s2", depends_on=("s1",))],
            ],
        ),
    )

    instance = await orchestrator.execute_workflow(definition)

    assert instance.step_status["s1"] is StepStatus.BLOCKED
    assert instance.step_status["s2"] is StepStatus.BLOCKED
    assert instance.status is WorkflowStatus.FAILED
    await orchestrator.shutdown()
