"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ENV_REF_RE = re.compile(r"^\$(?:\{([A-Za-z_][A-Za-z0-9_]*)\}|([A-Za-z_][A-Za-z0-9_]*))$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` against the environment; unset vars and plain values pass through."""
    m = _ENV_REF_RE.match(value.strip()) if value else None
    if not m:
        return value
    return os.environ.get(m.group(1) or m.group(2), value)


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class StoreConfig(Base):
    """Thread store backend and retry policy."""

    backend: Literal["jsonl", "memory"] = "jsonl"
    path: str = ""  # empty = <workspace>/threads
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=0.2, ge=0)
    backoff_max: float = Field(default=2.0, ge=0)


class MemoryConfig(Base):
    """Cross-thread memory and prompt sizing."""

    history_window: int = Field(default=10, ge=1)  # messages per thread in the prompt
    prior_messages: int = Field(default=10, ge=0)  # recent messages sent as chat turns
    related_notes_limit: int = Field(default=3, ge=0)


class ResilienceConfig(Base):
    """Timeout, retry and circuit-breaker settings for LLM calls."""

    timeout: int = 120
    max_retries: int = 3
    circuit_breaker_threshold: int = 5
    circuit_breaker_cooldown: int = 60


class ProviderConfig(Base):
    """Language-model provider configuration."""

    model: str = "gpt-4o"
    api_key: str = ""
    api_base: str | None = None
    temperature: float = 0.2
    max_tokens: int = 1024
    resilience: ResilienceConfig = Field(default_factory=ResilienceConfig)

    @property
    def resolved_api_key(self) -> str:
        return _resolve_env(self.api_key)


class AgentConfig(Base):
    """Conversation turn settings."""

    turn_timeout: float | None = 180.0


class LoggingConfig(Base):
    level: str = "WARNING"
    json_output: bool = False


class Config(Base):
    """Root configuration for focusflow."""

    workspace: str = "~/.focusflow"
    store: StoreConfig = Field(default_factory=StoreConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def workspace_path(self) -> Path:
        """Get expanded workspace path."""
        return Path(self.workspace).expanduser()

    @property
    def threads_path(self) -> Path:
        if self.store.path:
            return Path(self.store.path).expanduser()
        return self.workspace_path / "threads"
