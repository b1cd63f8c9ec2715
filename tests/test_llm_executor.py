"""Tests for the chat-completion task executor."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest

from orchestra.agents.defaults import CODER, create_custom_agent
from orchestra.config import AzureOpenAIConfig
from orchestra.core.models import AgentInstance, TaskDefinition, TaskInstance, TaskStatus
from orchestra.executors.llm import DEFAULT_SYSTEM_PROMPT, LLMPool, LLMTaskExecutor
from orchestra.orchestration.orchestrator import Orchestrator


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


class FakeCompletions:
    def __init__(self, content: Optional[str]) -> None:
        self.content = content
        self.requests: List[Dict[str, Any]] = []

    async def create(self, **kwargs: Any) -> SimpleNamespace:
        self.requests.append(kwargs)
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def fake_client(content: Optional[str]) -> SimpleNamespace:
    return SimpleNamespace(chat=SimpleNamespace(completions=FakeCompletions(content)))


def make_task() -> TaskInstance:
    return TaskInstance(
        definition=TaskDefinition(
            id="t1",
            type="coding",
            name="Write parser",
            required_role="coder",
            description="Implement the config parser",
            input={"format": "toml"},
        )
    )


@pytest.mark.anyio
async def test_executor_uses_agent_prompt_and_default_model() -> None:
    client = fake_client("def parse(): ...")
    pool = LLMPool()
    pool.register_client("gpt-4", client)
    executor = LLMTaskExecutor(pool)

    result = await executor.execute(make_task(), AgentInstance(definition=CODER))

    assert result.success
    assert result.output == {
        "response": "def parse(): ...",
        "model": "gpt-4",
        "agent_name": "Coder",
    }
    request = client.chat.completions.requests[0]
    assert request["model"] == "gpt-4"
    assert request["messages"][0] == {
        "role": "system",
        "content": CODER.capabilities.system_prompt,
    }
    user_prompt = request["messages"][1]["content"]
    assert "Write parser (coding)" in user_prompt
    assert '"format": "toml"' in user_prompt


@pytest.mark.anyio
async def test_agent_model_overrides_default() -> None:
    client = fake_client("ok")
    pool = LLMPool()
    pool.register_client("small-model", client)
    agent = AgentInstance(
        definition=create_custom_agent("a", "Helper", "", model="small-model")
    )

    result = await LLMTaskExecutor(pool).execute(make_task(), agent)

    assert result.output["model"] == "small-model"
    assert client.chat.completions.requests[0]["messages"][0]["content"] == DEFAULT_SYSTEM_PROMPT


@pytest.mark.anyio
async def test_empty_response_is_a_failure() -> None:
    pool = LLMPool()
    pool.register_client("gpt-4", fake_client(""))

    result = await LLMTaskExecutor(pool).execute(make_task(), AgentInstance(definition=CODER))

    assert not result.success
    assert "empty response" in str(result.error)


@pytest.mark.anyio
async def test_unregistered_model_fails_task_through_scheduler() -> None:
    orchestrator = Orchestrator(executor=LLMTaskExecutor(LLMPool()))
    orchestrator.register_agent(CODER)

    task = orchestrator.submit_task(
        TaskDefinition(id="t1", type="coding", name="x", required_role="coder", max_retries=0)
    )
    task = await orchestrator.wait_for_task(task.task_id)

    assert task.status is TaskStatus.FAILED
    assert "not registered" in str(task.error)
    await orchestrator.shutdown()


@pytest.mark.anyio
async def test_pool_limits_concurrent_use_per_model() -> None:
    pool = LLMPool()
    pool.register_client("gpt-4", fake_client("ok"), max_concurrent=1)
    order: List[str] = []

    async def use(name: str) -> None:
        async with pool.acquire("gpt-4"):
            order.append(f"{name}-in")
            await asyncio.sleep(0)
            order.append(f"{name}-out")

    await asyncio.gather(use("first"), use("second"))

    assert order == ["first-in", "first-out", "second-in", "second-out"]


@pytest.mark.anyio
async def test_azure_client_is_built_once_on_first_use(monkeypatch) -> None:
    import openai

    built: List[Dict[str, Any]] = []

    def fake_azure(**kwargs: Any) -> SimpleNamespace:
        built.append(kwargs)
        return fake_client("ok")

    monkeypatch.setattr(openai, "AsyncAzureOpenAI", fake_azure)
    pool = LLMPool()
    pool.register_azure_openai(
        "gpt-4", AzureOpenAIConfig(api_key="key", endpoint="https://example.invalid")
    )
    assert "gpt-4" in pool
    assert built == []

    async with pool.acquire("gpt-4") as first:
        pass
    async with pool.acquire("gpt-4") as second:
        pass

    assert first is second
    assert built == [
        {
            "api_key": "key",
            "api_version": AzureOpenAIConfig.api_version,
            "azure_endpoint": "https://example.invalid",
        }
    ]


@pytest.mark.anyio
async def test_acquire_unknown_model_raises_key_error() -> None:
    with pytest.raises(KeyError, match="ghost"):
        async with LLMPool().acquire("ghost"):
            pass
