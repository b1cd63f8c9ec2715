"""Typed lifecycle events and the in-process bus that fans them out."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Type

from .models import AgentStatus, Message, TaskStatus, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True, kw_only=True)
class OrchestratorEvent:
    """Base class for every event emitted by the engine."""

    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True, kw_only=True)
class AgentCreated(OrchestratorEvent):
    agent_id: str
    role: str


@dataclass(frozen=True, kw_only=True)
class AgentDestroyed(OrchestratorEvent):
    agent_id: str


@dataclass(frozen=True, kw_only=True)
class AgentStatusChanged(OrchestratorEvent):
    agent_id: str
    status: AgentStatus
    previous: AgentStatus


@dataclass(frozen=True, kw_only=True)
class TaskCreated(OrchestratorEvent):
    task_id: str
    status: TaskStatus = TaskStatus.PENDING


@dataclass(frozen=True, kw_only=True)
class TaskQueued(OrchestratorEvent):
    task_id: str
    retries: int = 0


@dataclass(frozen=True, kw_only=True)
class TaskAssigned(OrchestratorEvent):
    task_id: str
    agent_id: str


@dataclass(frozen=True, kw_only=True)
class TaskStarted(OrchestratorEvent):
    task_id: str
    agent_id: str


@dataclass(frozen=True, kw_only=True)
class TaskRetried(OrchestratorEvent):
    task_id: str
    retries: int
    error: BaseException


@dataclass(frozen=True, kw_only=True)
class TaskCompleted(OrchestratorEvent):
    task_id: str
    output: Any
    duration: Optional[float] = None


@dataclass(frozen=True, kw_only=True)
class TaskFailed(OrchestratorEvent):
    task_id: str
    error: BaseException


@dataclass(frozen=True, kw_only=True)
class WorkflowStarted(OrchestratorEvent):
    instance_id: str
    workflow_id: str


@dataclass(frozen=True, kw_only=True)
class WorkflowStepCompleted(OrchestratorEvent):
    instance_id: str
    step_id: str


@dataclass(frozen=True, kw_only=True)
class WorkflowStepFailed(OrchestratorEvent):
    instance_id: str
    step_id: str
    error: BaseException


@dataclass(frozen=True, kw_only=True)
class WorkflowCompleted(OrchestratorEvent):
    instance_id: str
    output: Dict[str, Any]


@dataclass(frozen=True, kw_only=True)
class WorkflowFailed(OrchestratorEvent):
    instance_id: str
    error: BaseException


@dataclass(frozen=True, kw_only=True)
class MessageSent(OrchestratorEvent):
    message: Message


EventHandler = Callable[[OrchestratorEvent], None]


class EventBus:
    """Synchronous publish/subscribe hub for engine events.

    Handlers run inline in the emitting call. A handler that raises is logged and
    skipped so observers can never change engine behaviour.
    """

    def __init__(self) -> None:
        self._subscribers: List[Tuple[EventHandler, Tuple[Type[OrchestratorEvent], ...]]] = []

    def subscribe(
        self,
        handler: EventHandler,
        *event_types: Type[OrchestratorEvent],
    ) -> Callable[[], None]:
        """Register ``handler`` for the given event types (all events if none).

        Returns a callable that removes the subscription.
        """
        entry = (handler, event_types or (OrchestratorEvent,))
        self._subscribers.append(entry)

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def emit(self, event: OrchestratorEvent) -> None:
        for handler, event_types in list(self._subscribers):
            if not isinstance(event, event_types):
                continue
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                logger.exception("Event handler %r failed on %s", handler, type(event).__name__)
