"""Orchestrator wiring registry, scheduler, workflows, messaging and stats together."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Mapping, Optional, Type

from orchestra.agents.defaults import DEFAULT_AGENTS
from orchestra.agents.registry import AgentRegistry
from orchestra.config import Config
from orchestra.core.errors import UnknownWorkflow
from orchestra.core.events import EventBus, EventHandler, OrchestratorEvent
from orchestra.core.message_bus import MessageBus
from orchestra.core.models import (
    AgentDefinition,
    AgentInstance,
    AgentStatus,
    Message,
    MessageType,
    OrchestratorStats,
    TaskDefinition,
    TaskInstance,
    WorkflowDefinition,
    WorkflowInstance,
)
from orchestra.executors.base import TaskExecutor
from orchestra.orchestration.scheduler import Scheduler, TaskStore
from orchestra.orchestration.stats import StatsCollector
from orchestra.orchestration.templates import get_workflow_template
from orchestra.orchestration.workflow import WorkflowEngine

logger = logging.getLogger(__name__)


class Orchestrator:
    """One orchestration session: a single instance of every engine component.

    The host constructs it and passes it around; nothing in the engine keeps a
    module-level instance.
    """

    def __init__(self, *, executor: TaskExecutor, config: Optional[Config] = None) -> None:
        self.config = config or Config()
        self.events = EventBus()
        self.registry = AgentRegistry(self.events)
        self.bus = MessageBus(self.events)
        self.store = TaskStore()
        self.scheduler = Scheduler(
            registry=self.registry,
            store=self.store,
            executor=executor,
            events=self.events,
            default_max_retries=self.config.default_max_retries,
        )
        self.workflows = WorkflowEngine(
            self.scheduler,
            self.events,
            max_loop_iterations=self.config.max_loop_iterations,
        )
        self.stats = StatsCollector(self.events)

    # ------------------------------------------------------------------
    # Agents
    # ------------------------------------------------------------------

    def register_agent(self, definition: AgentDefinition) -> AgentInstance:
        agent = self.registry.register_agent(definition)
        self.bus.register(definition.id)
        self._reschedule()
        return agent

    def unregister_agent(self, agent_id: str, *, force: bool = False) -> None:
        """Remove an agent; with ``force`` a busy agent's task is failed first."""
        if force:
            task = self.scheduler.abandon_agent(agent_id)
            if task is not None:
                logger.warning("Agent %s unregistered while running %s", agent_id, task.task_id)
        self.registry.unregister_agent(agent_id)
        self.bus.unregister(agent_id)
        self._reschedule()

    def set_agent_status(self, agent_id: str, status: AgentStatus) -> AgentInstance:
        agent = self.registry.set_status(agent_id, status)
        if status is AgentStatus.IDLE:
            self._reschedule()
        return agent

    def get_agent(self, agent_id: str) -> AgentInstance:
        return self.registry.get(agent_id)

    def list_agents(self) -> Iterable[AgentInstance]:
        return self.registry.list_agents()

    # ------------------------------------------------------------------
    # Tasks and workflows
    # ------------------------------------------------------------------

    def submit_task(self, definition: TaskDefinition) -> TaskInstance:
        """Create, queue and schedule a standalone task."""
        return self.scheduler.submit(definition)

    def get_task(self, task_id: str) -> TaskInstance:
        return self.store.get(task_id)

    async def wait_for_task(self, task_id: str) -> TaskInstance:
        return await self.scheduler.wait(task_id)

    def start_workflow(
        self,
        definition: WorkflowDefinition,
        input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowInstance:
        return self.workflows.start_workflow(definition, input)

    async def execute_workflow(
        self,
        definition: WorkflowDefinition,
        input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowInstance:
        return await self.workflows.execute_workflow(definition, input)

    async def execute_template(
        self,
        template_id: str,
        input: Optional[Mapping[str, Any]] = None,
    ) -> WorkflowInstance:
        return await self.workflows.execute_workflow(self.resolve_template(template_id), input)

    def resolve_template(self, template_id: str) -> WorkflowDefinition:
        definition = get_workflow_template(template_id)
        if definition is None:
            raise UnknownWorkflow(template_id)
        return definition

    def get_workflow(self, instance_id: str) -> WorkflowInstance:
        return self.workflows.get_instance(instance_id)

    def list_workflows(self) -> List[WorkflowInstance]:
        return self.workflows.list_instances()

    # ------------------------------------------------------------------
    # Messaging, events and stats
    # ------------------------------------------------------------------

    def send_message(
        self,
        sender: str,
        recipient: Optional[str],
        content: Any,
        *,
        type: MessageType = MessageType.STATUS_UPDATE,
        task_id: Optional[str] = None,
    ) -> Message:
        return self.bus.send(sender, recipient, content, type=type, task_id=task_id)

    def inbox(self, agent_id: str) -> List[Message]:
        return self.bus.inbox(agent_id)

    def subscribe(self, handler: EventHandler, *event_types: Type[OrchestratorEvent]):
        return self.events.subscribe(handler, *event_types)

    def get_stats(self) -> OrchestratorStats:
        return self.stats.snapshot()

    async def shutdown(self) -> None:
        """Wait for running workflows and in-flight tasks to settle."""
        await self.workflows.join()
        await self.scheduler.join()
        self.stats.close()

    def _reschedule(self) -> None:
        # Scheduling spawns executor calls and therefore needs a running loop.
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; scheduling deferred")
            return
        self.scheduler.schedule()


def create_orchestrator(
    executor: TaskExecutor,
    *,
    config: Optional[Config] = None,
    agents: Iterable[AgentDefinition] = DEFAULT_AGENTS,
) -> Orchestrator:
    """Create an orchestrator with the default agents registered."""
    orchestrator = Orchestrator(executor=executor, config=config)
    for definition in agents:
        orchestrator.register_agent(definition)
    return orchestrator


def create_minimal_orchestrator(
    roles: Iterable[str],
    executor: TaskExecutor,
    *,
    config: Optional[Config] = None,
) -> Orchestrator:
    """Create an orchestrator with only the default agents for ``roles``."""
    wanted = set(roles)
    return create_orchestrator(
        executor,
        config=config,
        agents=[definition for definition in DEFAULT_AGENTS if definition.role in wanted],
    )
