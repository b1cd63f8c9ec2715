"""HTTP API exposing agent registration and messaging."""
from __future__ import annotations

from typing import Any, List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from orchestra.agents.defaults import create_custom_agent
from orchestra.core.errors import (
    AgentBusy,
    DuplicateAgent,
    DuplicateTask,
    OrchestrationError,
    UnknownAgent,
    UnknownTask,
    UnknownWorkflow,
)
from orchestra.core.models import AgentInstance, AgentStatus, Message, MessageType
from orchestra.orchestration.orchestrator import Orchestrator
from orchestra.runtime import get_orchestrator

router = APIRouter(prefix="/agents", tags=["agents"])


def raise_http(exc: OrchestrationError) -> NoReturn:
    """Translate an engine error into the matching HTTP error."""
    if isinstance(exc, (UnknownAgent, UnknownTask, UnknownWorkflow)):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, (DuplicateAgent, DuplicateTask, AgentBusy)):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_400_BAD_REQUEST
    raise HTTPException(status_code=code, detail=str(exc)) from exc


class AgentCreateRequest(BaseModel):
    id: str = Field(..., description="Unique agent identifier")
    name: str = Field(..., description="Display name")
    role: str = Field(..., description="Role tag used to match tasks")
    description: str = ""
    tools: List[str] = Field(default_factory=list)
    task_types: List[str] = Field(default_factory=list)
    max_concurrency: int = Field(default=5, ge=1)
    model: Optional[str] = None
    system_prompt: Optional[str] = None
    depends_on: List[str] = Field(default_factory=list)
    priority: int = 50


class AgentResponse(BaseModel):
    agent_id: str
    name: str
    role: str
    status: str
    current_task_id: Optional[str]
    completed_tasks: int
    failed_tasks: int

    @classmethod
    def from_instance(cls, agent: AgentInstance) -> "AgentResponse":
        return cls(
            agent_id=agent.agent_id,
            name=agent.definition.name,
            role=agent.role,
            status=agent.status.value,
            current_task_id=agent.current_task_id,
            completed_tasks=agent.completed_tasks,
            failed_tasks=agent.failed_tasks,
        )


class AgentStatusRequest(BaseModel):
    status: AgentStatus


class MessageRequest(BaseModel):
    sender: str = Field(..., description="Identifier of the sender")
    content: Any = None
    type: MessageType = MessageType.STATUS_UPDATE
    task_id: Optional[str] = None


class MessageResponse(BaseModel):
    id: str
    type: str
    sender: str
    recipient: Optional[str]
    content: Any
    task_id: Optional[str]
    timestamp: str

    @classmethod
    def from_message(cls, message: Message) -> "MessageResponse":
        return cls(
            id=message.id,
            type=message.type.value,
            sender=message.sender,
            recipient=message.recipient,
            content=message.content,
            task_id=message.task_id,
            timestamp=message.timestamp.isoformat(),
        )


@router.post("", response_model=AgentResponse, status_code=status.HTTP_201_CREATED)
async def create_agent(
    request: AgentCreateRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    definition = create_custom_agent(
        request.id,
        request.name,
        request.description,
        role=request.role,
        tools=request.tools,
        task_types=request.task_types,
        max_concurrency=request.max_concurrency,
        model=request.model,
        system_prompt=request.system_prompt,
        depends_on=request.depends_on,
        priority=request.priority,
    )
    try:
        agent = orchestrator.register_agent(definition)
    except OrchestrationError as exc:
        raise_http(exc)
    return AgentResponse.from_instance(agent)


@router.get("", response_model=List[AgentResponse])
async def list_agents(orchestrator: Orchestrator = Depends(get_orchestrator)) -> List[AgentResponse]:
    return [AgentResponse.from_instance(agent) for agent in orchestrator.list_agents()]


@router.get("/{agent_id}", response_model=AgentResponse)
async def get_agent(agent_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> AgentResponse:
    try:
        return AgentResponse.from_instance(orchestrator.get_agent(agent_id))
    except OrchestrationError as exc:
        raise_http(exc)


@router.delete("/{agent_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_agent(
    agent_id: str,
    force: bool = False,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> None:
    try:
        orchestrator.unregister_agent(agent_id, force=force)
    except OrchestrationError as exc:
        raise_http(exc)


@router.put("/{agent_id}/status", response_model=AgentResponse)
async def update_agent_status(
    agent_id: str,
    request: AgentStatusRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> AgentResponse:
    try:
        agent = orchestrator.set_agent_status(agent_id, request.status)
    except OrchestrationError as exc:
        raise_http(exc)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return AgentResponse.from_instance(agent)


@router.post(
    "/{agent_id}/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def send_message(
    agent_id: str,
    request: MessageRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    try:
        message = orchestrator.send_message(
            request.sender,
            agent_id,
            request.content,
            type=request.type,
            task_id=request.task_id,
        )
    except OrchestrationError as exc:
        raise_http(exc)
    return MessageResponse.from_message(message)


@router.post("/broadcast", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def broadcast_message(
    request: MessageRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> MessageResponse:
    message = orchestrator.send_message(
        request.sender,
        None,
        request.content,
        type=request.type,
        task_id=request.task_id,
    )
    return MessageResponse.from_message(message)


@router.get("/{agent_id}/inbox", response_model=List[MessageResponse])
async def get_inbox(
    agent_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
) -> List[MessageResponse]:
    try:
        messages = orchestrator.inbox(agent_id)
    except OrchestrationError as exc:
        raise_http(exc)
    return [MessageResponse.from_message(message) for message in messages]
