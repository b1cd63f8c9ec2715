"""Tests for agent-to-agent messaging."""
from __future__ import annotations

import asyncio
from typing import List

import pytest

from orchestra.core.errors import UnknownAgent
from orchestra.core.events import EventBus, MessageSent
from orchestra.core.message_bus import MessageBus
from orchestra.core.models import MessageType
from orchestra.executors.echo import EchoExecutor
from orchestra.orchestration.orchestrator import create_minimal_orchestrator


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


def test_broadcast_reaches_everyone_but_the_sender() -> None:
    orchestrator = create_minimal_orchestrator(
        ["coordinator", "coder", "reviewer", "tester"], EchoExecutor()
    )

    message = orchestrator.send_message("coordinator", None, {"note": "standup"})

    assert message.type is MessageType.BROADCAST
    assert orchestrator.inbox("coordinator") == []
    for agent_id in ("coder", "reviewer", "tester"):
        inbox = orchestrator.inbox(agent_id)
        assert len(inbox) == 1
        assert inbox[0].content == {"note": "standup"}
        assert inbox[0].id == message.id
    assert orchestrator.inbox("coder")[0] is not orchestrator.inbox("tester")[0]


def test_direct_message_and_unknown_recipient() -> None:
    events = EventBus()
    sent: List[MessageSent] = []
    events.subscribe(sent.append, MessageSent)
    bus = MessageBus(events)
    bus.register("coder")
    bus.register("reviewer")

    bus.send("coder", "reviewer", "please review", type=MessageType.QUESTION, task_id="t1")
    bus.send("reviewer", "coder", "looks good", type=MessageType.ANSWER, task_id="t1")

    question = bus.inbox("reviewer")[0]
    assert question.type is MessageType.QUESTION
    assert question.task_id == "t1"
    assert [message.content for message in bus.inbox("coder")] == ["looks good"]
    assert [event.message.content for event in sent] == ["please review", "looks good"]
    assert len(bus.history()) == 2

    with pytest.raises(UnknownAgent):
        bus.send("coder", "ghost", "hello?")
    with pytest.raises(UnknownAgent):
        bus.inbox("ghost")


def test_reading_inbox_does_not_consume_messages() -> None:
    bus = MessageBus()
    bus.register("coder")
    bus.send("tester", "coder", "first")

    bus.inbox("coder").clear()

    assert [message.content for message in bus.inbox("coder")] == ["first"]


def test_unregistered_agent_stops_receiving_broadcasts() -> None:
    bus = MessageBus()
    bus.register("coder")
    bus.register("tester")
    bus.unregister("tester")

    bus.send("coordinator", None, "hello")

    assert not bus.is_registered("tester")
    assert [message.content for message in bus.inbox("coder")] == ["hello"]


@pytest.mark.anyio
async def test_deliver_streams_new_messages() -> None:
    bus = MessageBus()

    async with bus.deliver("client") as inbox:
        bus.send("coder", "client", {"status": "done"}, type=MessageType.TASK_RESPONSE)
        reply = await asyncio.wait_for(inbox.get(), timeout=2)

    assert reply.sender == "coder"
    assert reply.type is MessageType.TASK_RESPONSE
    assert reply.content == {"status": "done"}
