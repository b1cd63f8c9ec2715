"""LLM-backed task executor with a shared, concurrency-limited client pool."""
from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Optional

from orchestra.config import AzureOpenAIConfig
from orchestra.core.models import AgentInstance, TaskInstance, TaskResult
from orchestra.executors.base import TaskExecutor

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant agent in a multi-agent system."


@dataclass(slots=True)
class _ModelSlot:
    semaphore: asyncio.Semaphore
    client: Any = None
    settings: Optional[AzureOpenAIConfig] = None


class LLMPool:
    """Shared model clients, each behind its own concurrency limit.

    Azure OpenAI clients are built on first use so that registering a model
    never needs network access or the ``openai`` package.
    """

    def __init__(self) -> None:
        self._slots: Dict[str, _ModelSlot] = {}

    def register_azure_openai(self, name: str, settings: AzureOpenAIConfig) -> None:
        self._slots[name] = _ModelSlot(
            semaphore=asyncio.Semaphore(settings.max_concurrent), settings=settings
        )

    def register_client(self, name: str, client: Any, max_concurrent: int = 10) -> None:
        """Register an already constructed OpenAI-compatible async client."""
        self._slots[name] = _ModelSlot(semaphore=asyncio.Semaphore(max_concurrent), client=client)

    def __contains__(self, model_name: object) -> bool:
        return model_name in self._slots

    @asynccontextmanager
    async def acquire(self, model_name: str) -> AsyncIterator[Any]:
        """Hold one of the model's concurrency slots while the client is in use."""
        slot = self._slots.get(model_name)
        if slot is None:
            raise KeyError(f"Model '{model_name}' is not registered")
        async with slot.semaphore:
            yield self._client_for(model_name, slot)

    @staticmethod
    def _client_for(model_name: str, slot: _ModelSlot) -> Any:
        if slot.client is None:
            from openai import AsyncAzureOpenAI

            settings = slot.settings
            slot.client = AsyncAzureOpenAI(
                api_key=settings.api_key,
                api_version=settings.api_version,
                azure_endpoint=settings.endpoint,
            )
            logger.info("Created Azure OpenAI client for model %s", model_name)
        return slot.client


class LLMTaskExecutor(TaskExecutor):
    """Runs a task as one chat completion using the agent's model and system prompt."""

    def __init__(
        self,
        llm_pool: LLMPool,
        *,
        default_model: str = "gpt-4",
        temperature: float = 0.7,
    ) -> None:
        self._llm_pool = llm_pool
        self.default_model = default_model
        self.temperature = temperature

    async def execute(self, task: TaskInstance, agent: AgentInstance) -> TaskResult:
        capabilities = agent.definition.capabilities
        model_name = capabilities.model or self.default_model
        system_prompt = capabilities.system_prompt or DEFAULT_SYSTEM_PROMPT

        async with self._llm_pool.acquire(model_name) as client:
            response = await client.chat.completions.create(
                model=model_name,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": self.build_prompt(task)},
                ],
                temperature=self.temperature,
            )

        content = response.choices[0].message.content
        if not content:
            return TaskResult.failed(f"Model '{model_name}' returned an empty response")
        return TaskResult.ok(
            {
                "response": content,
                "model": model_name,
                "agent_name": agent.definition.name,
            }
        )

    @staticmethod
    def build_prompt(task: TaskInstance) -> str:
        definition = task.definition
        payload = json.dumps(dict(definition.input), indent=2, default=str)
        return (
            f"Task: {definition.name} ({definition.type})\n"
            f"{definition.description}\n\n"
            f"Input:\n{payload}"
        )
