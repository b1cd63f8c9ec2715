"""Registry owning the set of known agents and their live status."""
from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional

from orchestra.core.errors import AgentBusy, DuplicateAgent, UnknownAgent
from orchestra.core.events import AgentCreated, AgentDestroyed, AgentStatusChanged, EventBus
from orchestra.core.models import AgentDefinition, AgentInstance, AgentStatus, utcnow

logger = logging.getLogger(__name__)


class AgentRegistry:
    """Lookup and mutation of agent instances.

    The registry never schedules anything itself; ``find_available`` is a pure
    query and the scheduler performs the actual assignment through ``assign``.
    """

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self._agents: Dict[str, AgentInstance] = {}
        self._events = events or EventBus()

    def register_agent(self, definition: AgentDefinition) -> AgentInstance:
        if definition.id in self._agents:
            raise DuplicateAgent(definition.id)
        for dependency in definition.depends_on:
            if dependency not in self._agents:
                raise UnknownAgent(dependency)

        agent = AgentInstance(definition=definition)
        self._agents[definition.id] = agent
        logger.info("Registered agent %s (role=%s)", definition.id, definition.role)
        self._events.emit(AgentCreated(agent_id=definition.id, role=definition.role))
        return agent

    def unregister_agent(self, agent_id: str) -> AgentInstance:
        agent = self.get(agent_id)
        if agent.status is AgentStatus.BUSY:
            raise AgentBusy(agent_id, agent.current_task_id)
        del self._agents[agent_id]
        logger.info("Unregistered agent %s", agent_id)
        self._events.emit(AgentDestroyed(agent_id=agent_id))
        return agent

    def get(self, agent_id: str) -> AgentInstance:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise UnknownAgent(agent_id)
        return agent

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._agents

    def __len__(self) -> int:
        return len(self._agents)

    def list_agents(self) -> Iterable[AgentInstance]:
        return list(self._agents.values())

    def find_available(self, required_role: str) -> Optional[AgentInstance]:
        """Return the highest-priority idle agent with the given role, if any."""
        best: Optional[AgentInstance] = None
        for agent in self._agents.values():
            if agent.status is not AgentStatus.IDLE or agent.role != required_role:
                continue
            # Strict comparison keeps the earliest registration on ties.
            if best is None or agent.definition.priority > best.definition.priority:
                best = agent
        return best

    def busy_count(self, role: str) -> int:
        return sum(
            1
            for agent in self._agents.values()
            if agent.role == role and agent.status is AgentStatus.BUSY
        )

    def role_capacity(self, role: str) -> int:
        """Largest ``max_concurrency`` declared by an agent of ``role``."""
        return max(
            (
                agent.definition.capabilities.max_concurrency
                for agent in self._agents.values()
                if agent.role == role
            ),
            default=0,
        )

    def assign(self, agent_id: str, task_id: str) -> AgentInstance:
        """Mark the agent busy with ``task_id``."""
        agent = self.get(agent_id)
        if agent.status is AgentStatus.BUSY:
            raise AgentBusy(agent_id, agent.current_task_id)
        agent.current_task_id = task_id
        self._change_status(agent, AgentStatus.BUSY)
        return agent

    def release(
        self,
        agent_id: str,
        *,
        completed: bool = False,
        failed: bool = False,
    ) -> AgentInstance:
        """Return a busy agent to idle, counting a finished or permanently failed task."""
        agent = self.get(agent_id)
        if completed:
            agent.completed_tasks += 1
        if failed:
            agent.failed_tasks += 1
        agent.current_task_id = None
        self._change_status(agent, AgentStatus.IDLE)
        return agent

    def set_status(self, agent_id: str, status: AgentStatus) -> AgentInstance:
        """Host-driven status change (idle, waiting or offline)."""
        agent = self.get(agent_id)
        if status is AgentStatus.BUSY:
            raise ValueError("Agents become busy only through task assignment")
        if agent.status is AgentStatus.BUSY:
            raise AgentBusy(agent_id, agent.current_task_id)
        self._change_status(agent, status)
        return agent

    def _change_status(self, agent: AgentInstance, status: AgentStatus) -> None:
        previous = agent.status
        agent.status = status
        agent.last_activity = utcnow()
        if previous is not status:
            self._events.emit(
                AgentStatusChanged(agent_id=agent.agent_id, status=status, previous=previous)
            )
