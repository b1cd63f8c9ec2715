"""Core data models shared across orchestrator components."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return str(uuid.uuid4())


class AgentStatus(str, Enum):
    """Live status of a registered agent."""

    IDLE = "idle"
    BUSY = "busy"
    WAITING = "waiting"
    OFFLINE = "offline"


class TaskStatus(str, Enum):
    """Run state of a task instance."""

    PENDING = "pending"
    QUEUED = "queued"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class TaskPriority(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return PRIORITY_WEIGHTS[self]


PRIORITY_WEIGHTS: Dict[TaskPriority, int] = {
    TaskPriority.CRITICAL: 1000,
    TaskPriority.HIGH: 100,
    TaskPriority.MEDIUM: 10,
    TaskPriority.LOW: 1,
}


class WorkflowStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


class MessageType(str, Enum):
    TASK_REQUEST = "task_request"
    TASK_RESPONSE = "task_response"
    STATUS_UPDATE = "status_update"
    QUESTION = "question"
    ANSWER = "answer"
    BROADCAST = "broadcast"
    HANDOFF = "handoff"


# ---------------------------------------------------------------------------
# Agents
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class AgentCapabilities:
    """Static capability descriptor attached to an agent definition."""

    tools: frozenset[str] = frozenset()
    max_concurrency: int = 5
    task_types: frozenset[str] = frozenset()
    model: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AgentDefinition:
    """Immutable description of an agent, authored outside the engine."""

    id: str
    name: str
    role: str
    description: str = ""
    capabilities: AgentCapabilities = field(default_factory=AgentCapabilities)
    depends_on: Tuple[str, ...] = ()
    priority: int = 50


@dataclass(slots=True)
class AgentInstance:
    """Runtime state the registry keeps for each registered agent."""

    definition: AgentDefinition
    status: AgentStatus = AgentStatus.IDLE
    current_task_id: Optional[str] = None
    completed_tasks: int = 0
    failed_tasks: int = 0
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)

    @property
    def agent_id(self) -> str:
        return self.definition.id

    @property
    def role(self) -> str:
        return self.definition.role


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TaskDefinition:
    """A unit of work. String inputs of the form ``$name`` are context references."""

    id: str
    type: str
    name: str
    required_role: str
    description: str = ""
    input: Mapping[str, Any] = field(default_factory=dict)
    priority: TaskPriority = TaskPriority.MEDIUM
    max_retries: Optional[int] = None
    depends_on: Tuple[str, ...] = ()
    parent_id: Optional[str] = None


@dataclass(slots=True)
class TaskInstance:
    """Run state of a task, keyed in the task store by its definition id."""

    definition: TaskDefinition
    status: TaskStatus = TaskStatus.PENDING
    assigned_agent: Optional[str] = None
    retries: int = 0
    output: Any = None
    error: Optional[BaseException] = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def task_id(self) -> str:
        return self.definition.id

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


@dataclass(slots=True)
class TaskResult:
    """Outcome reported by a task executor."""

    success: bool
    output: Any = None
    error: Optional[BaseException] = None

    @classmethod
    def ok(cls, output: Any = None) -> TaskResult:
        return cls(success=True, output=output)

    @classmethod
    def failed(cls, error: Union[BaseException, str]) -> TaskResult:
        if isinstance(error, str):
            error = RuntimeError(error)
        return cls(success=False, error=error)


# ---------------------------------------------------------------------------
# Workflows
# ---------------------------------------------------------------------------

# A condition is either a callable over the run context or a "$name" reference,
# optionally negated with a leading "!".
Condition = Union[str, Callable[[Mapping[str, Any]], bool]]


@dataclass(frozen=True, slots=True)
class TaskStep:
    id: str
    tasks: List[TaskDefinition]
    name: str = ""
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ParallelStep:
    id: str
    branches: List[List[WorkflowStep]]
    name: str = ""
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class ConditionalStep:
    id: str
    condition: Condition
    then: WorkflowStep
    otherwise: Optional[WorkflowStep] = None
    name: str = ""
    depends_on: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class LoopStep:
    """Runs ``body`` until ``until`` holds, at most ``max_iterations`` times."""

    id: str
    body: WorkflowStep
    until: Condition
    max_iterations: Optional[int] = None
    name: str = ""
    depends_on: Tuple[str, ...] = ()


WorkflowStep = Union[TaskStep, ParallelStep, ConditionalStep, LoopStep]


@dataclass(frozen=True, slots=True)
class WorkflowDefinition:
    id: str
    name: str
    steps: List[WorkflowStep]
    description: str = ""
    input_schema: Mapping[str, Any] = field(default_factory=dict)
    output_schema: Mapping[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkflowInstance:
    """A running (or finished) execution of a workflow definition."""

    definition: WorkflowDefinition
    instance_id: str = field(default_factory=new_id)
    status: WorkflowStatus = WorkflowStatus.PENDING
    input: Dict[str, Any] = field(default_factory=dict)
    output: Dict[str, Any] = field(default_factory=dict)
    completed_steps: List[str] = field(default_factory=list)
    step_status: Dict[str, StepStatus] = field(default_factory=dict)
    step_errors: Dict[str, BaseException] = field(default_factory=dict)
    tasks: Dict[str, TaskInstance] = field(default_factory=dict)
    error: Optional[BaseException] = None
    started_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Messaging and stats
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class Message:
    """Message exchanged between agents over the bus. ``recipient=None`` broadcasts."""

    sender: str
    recipient: Optional[str]
    content: Any
    type: MessageType = MessageType.STATUS_UPDATE
    task_id: Optional[str] = None
    id: str = field(default_factory=new_id)
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(slots=True)
class OrchestratorStats:
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
