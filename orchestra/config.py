"""Configuration management for the orchestrator."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return default if value is None or value == "" else int(value)


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Credentials and limits for one Azure OpenAI deployment."""

    api_key: str
    endpoint: str
    api_version: str = "2024-02-15-preview"
    deployment_name: str = "gpt-4"
    max_concurrent: int = 50

    @classmethod
    def from_env(cls) -> Optional[AzureOpenAIConfig]:
        """Read ``AZURE_OPENAI_*`` variables; None unless key and endpoint are both set."""
        api_key = os.getenv("AZURE_OPENAI_KEY")
        endpoint = os.getenv("AZURE_OPENAI_ENDPOINT")
        if not (api_key and endpoint):
            return None
        return cls(
            api_key=api_key,
            endpoint=endpoint,
            api_version=os.getenv("AZURE_OPENAI_API_VERSION") or cls.api_version,
            deployment_name=os.getenv("AZURE_OPENAI_DEPLOYMENT") or cls.deployment_name,
            max_concurrent=_env_int("AZURE_OPENAI_MAX_CONCURRENT", cls.max_concurrent),
        )


@dataclass(frozen=True)
class Config:
    """Application configuration loaded from environment variables."""

    azure_openai: Optional[AzureOpenAIConfig] = None
    environment: str = "development"
    log_level: str = "INFO"
    default_max_retries: int = 3
    max_loop_iterations: int = 10
    default_model: str = "gpt-4"

    @classmethod
    def from_env(cls) -> Config:
        """Build a config from ``ORCHESTRA_*`` and ``AZURE_OPENAI_*`` variables."""
        return cls(
            azure_openai=AzureOpenAIConfig.from_env(),
            environment=os.getenv("ORCHESTRA_ENVIRONMENT", cls.environment),
            log_level=os.getenv("ORCHESTRA_LOG_LEVEL", cls.log_level).upper(),
            default_max_retries=_env_int("ORCHESTRA_MAX_RETRIES", cls.default_max_retries),
            max_loop_iterations=_env_int(
                "ORCHESTRA_MAX_LOOP_ITERATIONS", cls.max_loop_iterations
            ),
            default_model=os.getenv("ORCHESTRA_DEFAULT_MODEL", cls.default_model),
        )


def configure_logging(level: str = "INFO") -> None:
    """Install a root handler for host entry points; the library itself never does."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# Global config instance
config = Config.from_env()
