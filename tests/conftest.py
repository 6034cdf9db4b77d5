from __future__ import annotations

from typing import Any, AsyncIterator

import pytest

from nimbridge.errors import UpstreamError
from nimbridge.providers.base import LLMProvider, LLMResponse, UpstreamStream


class FakeStream(UpstreamStream):
    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self.chunks = chunks
        self.error = error
        self.closed = False

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        for chunk in self.chunks:
            yield chunk
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeProvider(LLMProvider):
    """Scripted provider: replies are consumed in order, the last one repeats.

    A reply may be a string, an ``LLMResponse`` or an exception to raise.
    """

    def __init__(self, replies: list[Any] | None = None, stream_chunks: list[bytes] | None = None) -> None:
        super().__init__(api_key=None, api_base=None)
        self.replies = list(replies or ["*nods* ok"])
        self.stream_chunks = stream_chunks or []
        self.calls: list[dict[str, Any]] = []
        self.stream_calls: list[dict[str, Any]] = []
        self.streams: list[FakeStream] = []
        self.stream_error: UpstreamError | None = None

    async def chat(self, messages, model, max_tokens=2048, temperature=0.6) -> LLMResponse:
        self.calls.append({
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, LLMResponse):
            return reply
        return LLMResponse(content=reply)

    async def open_stream(self, messages, model, max_tokens=2048, temperature=0.6) -> UpstreamStream:
        self.stream_calls.append({
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.stream_error is not None:
            raise self.stream_error
        stream = FakeStream(list(self.stream_chunks))
        self.streams.append(stream)
        return stream


@pytest.fixture
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def provider_factory() -> type[FakeProvider]:
    return FakeProvider
