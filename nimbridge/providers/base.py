"""Provider interface for the upstream completion endpoint."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator


@dataclass
class LLMResponse:
    """Non-streaming completion result."""

    content: str | None
    role: str = "assistant"
    finish_reason: str = "stop"
    usage: dict[str, int] = field(default_factory=dict)
    reasoning_content: str | None = None

    @property
    def text(self) -> str:
        return self.content or ""


class UpstreamStream(ABC):
    """An open streaming response; raw server-sent-event bytes in arrival order."""

    @abstractmethod
    def aiter_bytes(self) -> AsyncIterator[bytes]: ...

    @abstractmethod
    async def aclose(self) -> None: ...


class LLMProvider(ABC):
    """Opaque completion call: a message list plus sampling parameters in, text or bytes out."""

    def __init__(self, api_key: str | None = None, api_base: str | None = None):
        self.api_key = api_key
        self.api_base = api_base

    @abstractmethod
    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.6,
    ) -> LLMResponse:
        """Send a completion request; raise ``UpstreamError`` on transport/HTTP failure."""

    @abstractmethod
    async def open_stream(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.6,
    ) -> UpstreamStream:
        """Start a streaming completion; raise ``UpstreamError`` if it cannot be opened."""

    async def aclose(self) -> None:
        return None
