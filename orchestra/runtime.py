"""Application runtime composition helpers for the HTTP host."""
from __future__ import annotations

from functools import lru_cache

from orchestra.config import config
from orchestra.executors.base import TaskExecutor
from orchestra.executors.echo import EchoExecutor
from orchestra.executors.llm import LLMPool, LLMTaskExecutor
from orchestra.orchestration.orchestrator import Orchestrator, create_orchestrator


@lru_cache
def get_llm_pool() -> LLMPool:
    pool = LLMPool()

    if config.azure_openai:
        for model_name in {config.default_model, config.azure_openai.deployment_name}:
            pool.register_azure_openai(model_name, config.azure_openai)

    return pool


@lru_cache
def get_executor() -> TaskExecutor:
    if config.azure_openai:
        return LLMTaskExecutor(get_llm_pool(), default_model=config.default_model)
    return EchoExecutor()


@lru_cache
def get_orchestrator() -> Orchestrator:
    """The host's single orchestrator for this process, with the default agents."""
    return create_orchestrator(get_executor(), config=config)
