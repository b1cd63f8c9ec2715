"""Lightweight in-memory bus implementing agent-to-agent message delivery."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

from .errors import UnknownAgent
from .events import EventBus, MessageSent
from .models import Message, MessageType

logger = logging.getLogger(__name__)


class MessageBus:
    """Message hub keeping one ordered inbox per registered agent.

    Delivery is best-effort and in-memory. Inboxes are append-only; reading them
    never consumes messages.
    """

    def __init__(self, events: Optional[EventBus] = None) -> None:
        self._inboxes: Dict[str, List[Message]] = {}
        self._listeners: Dict[str, List[asyncio.Queue[Message]]] = {}
        self._history: List[Message] = []
        self._events = events

    def register(self, agent_id: str) -> None:
        """Ensure an inbox exists for the agent."""
        self._inboxes.setdefault(agent_id, [])

    def unregister(self, agent_id: str) -> None:
        """Drop the agent's inbox to stop further deliveries."""
        self._inboxes.pop(agent_id, None)
        self._listeners.pop(agent_id, None)

    def is_registered(self, agent_id: str) -> bool:
        return agent_id in self._inboxes

    def send(
        self,
        sender: str,
        recipient: Optional[str],
        content: Any,
        *,
        type: MessageType = MessageType.STATUS_UPDATE,
        task_id: Optional[str] = None,
    ) -> Message:
        """Deliver a message to ``recipient``, or broadcast it when recipient is None."""
        if recipient is not None and recipient not in self._inboxes:
            raise UnknownAgent(recipient)
        if recipient is None and type is MessageType.STATUS_UPDATE:
            type = MessageType.BROADCAST

        message = Message(
            sender=sender,
            recipient=recipient,
            content=content,
            type=type,
            task_id=task_id,
        )
        self._history.append(message)

        if recipient is not None:
            self._deliver(recipient, message)
        else:
            # Broadcast to all registered inboxes except the sender, one copy each.
            for agent_id in list(self._inboxes):
                if agent_id == sender:
                    continue
                self._deliver(agent_id, dataclasses.replace(message))

        logger.debug("Message %s from %s to %s", message.id, sender, recipient or "*")
        if self._events is not None:
            self._events.emit(MessageSent(message=message))
        return message

    def inbox(self, agent_id: str) -> List[Message]:
        """Return every message delivered to the agent, in arrival order."""
        if agent_id not in self._inboxes:
            raise UnknownAgent(agent_id)
        return list(self._inboxes[agent_id])

    def history(self) -> List[Message]:
        return list(self._history)

    @asynccontextmanager
    async def deliver(self, agent_id: str) -> AsyncIterator[asyncio.Queue[Message]]:
        """Context manager yielding a queue fed with the agent's new deliveries."""
        self.register(agent_id)
        queue: asyncio.Queue[Message] = asyncio.Queue()
        listeners = self._listeners.setdefault(agent_id, [])
        listeners.append(queue)
        try:
            yield queue
        finally:
            if queue in listeners:
                listeners.remove(queue)

    def _deliver(self, agent_id: str, message: Message) -> None:
        self._inboxes[agent_id].append(message)
        for queue in self._listeners.get(agent_id, ()):
            queue.put_nowait(message)
