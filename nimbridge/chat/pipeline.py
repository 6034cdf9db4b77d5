"""Request orchestration: identity, commands, memory, prompt and upstream call."""

from __future__ import annotations

import json
import time
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, AsyncIterator

import structlog

from nimbridge.chat.commands import CommandHandler
from nimbridge.chat.identity import ChatIdentityResolver
from nimbridge.chat.prompt import PromptAssembler
from nimbridge.chat.retry import CompletionRequest, RetryController
from nimbridge.chat.sanitizer import MessageSanitizer, content_text
from nimbridge.chat.stream import DONE_FRAME, THINK_CLOSE, THINK_OPEN, StreamMerger, encode_frame
from nimbridge.errors import InvalidRequestError
from nimbridge.logging import get_logger
from nimbridge.memory.scheduler import SummarizationScheduler
from nimbridge.memory.store import MemoryStore
from nimbridge.providers.base import LLMProvider, LLMResponse, UpstreamStream
from nimbridge.providers.models import ModelRegistry

logger = get_logger(__name__)


@dataclass
class ChatOutcome:
    """Either a completion object or an SSE byte stream for the client."""

    conversation_id: str
    payload: dict[str, Any] | None = None
    stream: AsyncIterator[bytes] | None = None


@dataclass(frozen=True)
class ChatPipelineDeps:
    provider: LLMProvider
    store: MemoryStore
    identity: ChatIdentityResolver
    sanitizer: MessageSanitizer
    scheduler: SummarizationScheduler
    assembler: PromptAssembler
    retry: RetryController
    commands: CommandHandler
    models: ModelRegistry


def completion_payload(
    model: str,
    content: str,
    *,
    role: str = "assistant",
    finish_reason: str = "stop",
    usage: dict[str, int] | None = None,
) -> dict[str, Any]:
    """OpenAI ``chat.completion`` object with a single choice."""
    return {
        "id": f"chatcmpl-{int(time.time() * 1000)}",
        "object": "chat.completion",
        "created": int(time.time()),
        "model": model,
        "choices": [{
            "index": 0,
            "message": {"role": role, "content": content},
            "finish_reason": finish_reason,
        }],
        "usage": usage or {"prompt_tokens": 0, "completion_tokens": 0, "total_tokens": 0},
    }


async def canned_stream(model: str, content: str) -> AsyncIterator[bytes]:
    """Stream a locally produced reply as SSE frames."""
    base = {"id": f"chatcmpl-{int(time.time() * 1000)}", "object": "chat.completion.chunk", "model": model}
    yield encode_frame({**base, "choices": [{"index": 0, "delta": {"role": "assistant", "content": content}}]})
    yield encode_frame({**base, "choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]})
    yield DONE_FRAME


class ChatPipeline:
    """Run one ``/v1/chat/completions`` request end to end."""

    def __init__(
        self,
        deps: ChatPipelineDeps,
        *,
        default_temperature: float = 0.6,
        max_tokens_cap: int = 2048,
        show_reasoning: bool = False,
        summarization_model: str | None = None,
    ) -> None:
        self.deps = deps
        self.default_temperature = default_temperature
        self.max_tokens_cap = max_tokens_cap
        self.show_reasoning = show_reasoning
        self.summarization_model = summarization_model

    @staticmethod
    def _validate(body: Any) -> list[Any]:
        if not isinstance(body, Mapping):
            raise InvalidRequestError("Request body must be a JSON object")
        messages = body.get("messages")
        if not isinstance(messages, list) or not messages:
            raise InvalidRequestError("'messages' must be a non-empty list")
        return messages

    def _sampling(self, body: Mapping[str, Any]) -> tuple[float, int]:
        temperature = body.get("temperature")
        if not isinstance(temperature, (int, float)) or isinstance(temperature, bool):
            temperature = self.default_temperature
        max_tokens = body.get("max_tokens")
        if not isinstance(max_tokens, int) or isinstance(max_tokens, bool) or max_tokens <= 0:
            max_tokens = self.max_tokens_cap
        return float(temperature), min(max_tokens, self.max_tokens_cap)

    async def handle(self, body: Any, headers: Mapping[str, str]) -> ChatOutcome:
        messages = self._validate(body)
        conversation_id, source = self.deps.identity.resolve(headers, body)
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(conversation_id=conversation_id, identity_source=source)

        client_model = str(body.get("model") or "")
        stream = bool(body.get("stream"))

        reply = await self.deps.commands.handle(content_text(_last_content(messages)), conversation_id)
        if reply is not None:
            if stream:
                return ChatOutcome(conversation_id, stream=canned_stream(client_model, reply.content))
            return ChatOutcome(conversation_id, payload=completion_payload(client_model, reply.content))

        upstream_model = self.deps.models.resolve(client_model)
        window = self.deps.sanitizer.sanitize(messages)
        record = await self.deps.store.get(conversation_id)
        record = await self.deps.scheduler.maybe_summarize(
            conversation_id,
            self.deps.sanitizer.clamp(messages),
            record,
            model=self.summarization_model or upstream_model,
        )
        final_messages = self.deps.assembler.assemble(record, window)

        temperature, max_tokens = self._sampling(body)
        logger.info(
            "Forwarding request",
            model=upstream_model,
            final_messages=len(final_messages),
            payload_kb=round(len(json.dumps(final_messages, ensure_ascii=False).encode("utf-8")) / 1024, 2),
            stream=stream,
        )

        if stream:
            upstream = await self.deps.provider.open_stream(
                messages=final_messages,
                model=upstream_model,
                max_tokens=max_tokens,
                temperature=temperature,
            )
            return ChatOutcome(conversation_id, stream=self._relay(upstream))

        result = await self.deps.retry.run(CompletionRequest(
            messages=final_messages,
            model=upstream_model,
            temperature=temperature,
            max_tokens=max_tokens,
        ))
        logger.info("Completion done", attempts=result.attempts, accepted=result.accepted)
        return ChatOutcome(conversation_id, payload=self._to_payload(client_model, result.response))

    def _to_payload(self, model: str, response: LLMResponse) -> dict[str, Any]:
        content = response.text
        if self.show_reasoning and response.reasoning_content:
            content = THINK_OPEN + response.reasoning_content + "\n" + THINK_CLOSE + content
        return completion_payload(
            model,
            content,
            role=response.role,
            finish_reason=response.finish_reason,
            usage=response.usage or None,
        )

    async def _relay(self, upstream: UpstreamStream) -> AsyncIterator[bytes]:
        """Merge upstream frames; closing this generator aborts the upstream response."""
        merger = StreamMerger(show_reasoning=self.show_reasoning)
        try:
            async for frame in merger.merge(upstream.aiter_bytes()):
                yield frame
        finally:
            await upstream.aclose()


def _last_content(messages: list[Any]) -> Any:
    last = messages[-1]
    return last.get("content") if isinstance(last, Mapping) else last
