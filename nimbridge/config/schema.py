"""Configuration schema using Pydantic."""

from __future__ import annotations

import os
import re
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_ENV_REF_RE = re.compile(r"^\$\{?([A-Za-z_][A-Za-z0-9_]*)\}?$")


def _resolve_env(value: str) -> str:
    """Resolve ``$VAR`` / ``${VAR}`` references; unset variables keep the original text."""
    if not value:
        return value
    m = _ENV_REF_RE.match(value.strip())
    if not m:
        return value
    return os.environ.get(m.group(1), value)


class Base(BaseModel):
    """Base model that accepts both camelCase and snake_case keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UpstreamConfig(Base):
    """Completion endpoint the relay forwards to."""

    api_base: str = "https://integrate.api.nvidia.com/v1"
    api_key: str = "$NIM_API_KEY"
    timeout: float = 120.0
    default_temperature: float = 0.6
    max_tokens_cap: int = 2048
    thinking_mode: bool = False
    model_aliases: dict[str, str] = Field(default_factory=dict)

    @property
    def resolved_api_key(self) -> str:
        resolved = _resolve_env(self.api_key)
        return "" if _ENV_REF_RE.match(resolved.strip()) else resolved


class MemoryConfig(Base):
    backend: Literal["memory", "file", "redis"] = "memory"
    directory: str = "~/.nimbridge/memory"
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "nimbridge:memory:"
    redis_ttl_seconds: int | None = None
    default_core_persona: str = (
        "You are a character in an ongoing, immersive roleplay. Stay fully in character, "
        "keep continuity with everything that has happened so far, and never break the fourth wall."
    )


class SummarizationConfig(Base):
    enabled: bool = True
    trigger_threshold: int = 60
    cooldown: int = 40
    keep_recent: int = 20
    scene_window: int = 25
    summary_max_tokens: int = 600
    scene_max_tokens: int = 200
    max_input_chars: int = 24000
    temperature: float = 0.3
    model: str | None = None


class RetryConfig(Base):
    enabled: bool = True
    max_retries: int = 5
    min_response_words: int = 50
    temperature_step: float = 0.05
    max_temperature: float = 1.0


class SanitizerConfig(Base):
    max_message_chars: int = 8000
    max_window: int = 80


class IdentityConfig(Base):
    header: str = "x-chat-id"
    body_fields: list[str] = Field(default_factory=lambda: ["chat_id", "conversation_id"])
    referer_pattern: str = r"/chats?/([A-Za-z0-9_-]+)"
    required: bool = False


class StreamConfig(Base):
    show_reasoning: bool = False


class ServerConfig(Base):
    host: str = "0.0.0.0"
    port: int = 3000
    service_name: str = "OpenAI to NVIDIA NIM Proxy"


class LoggingConfig(Base):
    level: str = "INFO"
    json_output: bool = True


class Config(Base):
    """Root configuration for nimbridge."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    summarization: SummarizationConfig = Field(default_factory=SummarizationConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    sanitizer: SanitizerConfig = Field(default_factory=SanitizerConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
