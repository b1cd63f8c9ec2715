"""HTTP API for standalone tasks, workflow runs and runtime statistics."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from orchestra.api.routes import raise_http
from orchestra.core.errors import OrchestrationError
from orchestra.core.models import TaskDefinition, TaskInstance, TaskPriority, WorkflowInstance
from orchestra.orchestration.orchestrator import Orchestrator
from orchestra.orchestration.templates import list_workflow_templates
from orchestra.runtime import get_orchestrator

tasks_router = APIRouter(prefix="/tasks", tags=["tasks"])
workflows_router = APIRouter(prefix="/workflows", tags=["workflows"])
stats_router = APIRouter(prefix="/stats", tags=["stats"])


class TaskCreateRequest(BaseModel):
    id: str
    type: str
    name: str
    required_role: str
    description: str = ""
    input: Dict[str, Any] = Field(default_factory=dict)
    priority: TaskPriority = TaskPriority.MEDIUM
    max_retries: Optional[int] = Field(default=None, ge=0)
    depends_on: List[str] = Field(default_factory=list)

    def to_definition(self) -> TaskDefinition:
        return TaskDefinition(
            id=self.id,
            type=self.type,
            name=self.name,
            required_role=self.required_role,
            description=self.description,
            input=dict(self.input),
            priority=self.priority,
            max_retries=self.max_retries,
            depends_on=tuple(self.depends_on),
        )


class TaskResponse(BaseModel):
    task_id: str
    name: str
    status: str
    assigned_agent: Optional[str]
    retries: int
    output: Any = None
    error: Optional[str] = None

    @classmethod
    def from_instance(cls, task: TaskInstance) -> "TaskResponse":
        return cls(
            task_id=task.task_id,
            name=task.definition.name,
            status=task.status.value,
            assigned_agent=task.assigned_agent,
            retries=task.retries,
            output=task.output,
            error=str(task.error) if task.error is not None else None,
        )


class TemplateResponse(BaseModel):
    id: str
    name: str
    description: str


class WorkflowRunRequest(BaseModel):
    input: Dict[str, Any] = Field(default_factory=dict)


class WorkflowResponse(BaseModel):
    instance_id: str
    workflow_id: str
    status: str
    completed_steps: List[str]
    step_status: Dict[str, str]
    output: Dict[str, Any]
    error: Optional[str] = None

    @classmethod
    def from_instance(cls, instance: WorkflowInstance) -> "WorkflowResponse":
        return cls(
            instance_id=instance.instance_id,
            workflow_id=instance.definition.id,
            status=instance.status.value,
            completed_steps=list(instance.completed_steps),
            step_status={step_id: value.value for step_id, value in instance.step_status.items()},
            output=dict(instance.output),
            error=str(instance.error) if instance.error is not None else None,
        )


class StatsResponse(BaseModel):
    agents_by_status: Dict[str, int]
    tasks_by_status: Dict[str, int]
    active_agents: int
    idle_agents: int
    pending_tasks: int
    running_tasks: int
    completed_tasks: int
    failed_tasks: int
    running_workflows: int
    avg_task_duration: float
    throughput: float
    uptime: float


@tasks_router.post("", response_model=TaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def submit_task(
    request: TaskCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> TaskResponse:
    try:
        task = orchestrator.submit_task(request.to_definition())
    except OrchestrationError as exc:
        raise_http(exc)
    return TaskResponse.from_instance(task)


@tasks_router.get("/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> TaskResponse:
    try:
        return TaskResponse.from_instance(orchestrator.get_task(task_id))
    except OrchestrationError as exc:
        raise_http(exc)


@workflows_router.get("/templates", response_model=List[TemplateResponse])
async def list_templates() -> List[TemplateResponse]:
    return [TemplateResponse(**template) for template in list_workflow_templates()]


@workflows_router.post(
    "/templates/{template_id}/runs",
    response_model=WorkflowResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def start_template_run(
    template_id: str,
    request: WorkflowRunRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> WorkflowResponse:
    try:
        definition = orchestrator.resolve_template(template_id)
    except OrchestrationError as exc:
        raise_http(exc)
    instance = orchestrator.start_workflow(definition, request.input)
    return WorkflowResponse.from_instance(instance)


@workflows_router.get("/runs", response_model=List[WorkflowResponse])
async def list_runs(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[WorkflowResponse]:
    return [WorkflowResponse.from_instance(instance) for instance in orchestrator.list_workflows()]


@workflows_router.get("/runs/{instance_id}", response_model=WorkflowResponse)
async def get_run(instance_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> WorkflowResponse:
    try:
        return WorkflowResponse.from_instance(orchestrator.get_workflow(instance_id))
    except OrchestrationError as exc:
        raise_http(exc)


@stats_router.get("", response_model=StatsResponse)
async def get_stats(orchestrator: Orchestrator = Depends(get_orchestrator)) -> StatsResponse:
    return StatsResponse(**asdict(orchestrator.get_stats()))
