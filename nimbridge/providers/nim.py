"""NVIDIA NIM (OpenAI-compatible) provider.

Non-streaming calls go through LiteLLM. Streaming calls use httpx directly,
because the relay rewrites the upstream's raw server-sent-event frames.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator

import httpx
import litellm
from litellm import acompletion

from nimbridge.errors import UpstreamError
from nimbridge.logging import get_logger, mask_secret
from nimbridge.providers.base import LLMProvider, LLMResponse, UpstreamStream

logger = get_logger("nimbridge.providers.nim")

_ALLOWED_MSG_KEYS = frozenset({"role", "content", "name"})


class _HttpxStream(UpstreamStream):
    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    async def aiter_bytes(self) -> AsyncIterator[bytes]:
        async for chunk in self._response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        await self._response.aclose()


class NimProvider(LLMProvider):
    """Provider for an OpenAI-compatible ``/chat/completions`` endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        api_base: str = "https://integrate.api.nvidia.com/v1",
        *,
        timeout: float = 120.0,
        thinking_mode: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(api_key, api_base.rstrip("/"))
        self.timeout = timeout
        self.thinking_mode = thinking_mode
        self._http = http_client
        if api_key:
            logger.info("provider_initialized", api_base=self.api_base, api_key=mask_secret(api_key))

        litellm.suppress_debug_info = True
        litellm.drop_params = True

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout, connect=10.0))
        return self._http

    def _mask(self, text: str) -> str:
        if self.api_key and self.api_key in text:
            return text.replace(self.api_key, mask_secret(self.api_key))
        return text

    @staticmethod
    def _sanitize_messages(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Strip non-standard keys before sending."""
        return [{k: v for k, v in msg.items() if k in _ALLOWED_MSG_KEYS} for msg in messages]

    def _extra_body(self) -> dict[str, Any] | None:
        if self.thinking_mode:
            return {"chat_template_kwargs": {"thinking": True}}
        return None

    async def chat(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.6,
    ) -> LLMResponse:
        """
        Send a chat completion request via LiteLLM.

        Args:
            messages: List of message dicts with 'role' and 'content'.
            model: Upstream model identifier (e.g. 'meta/llama-3.1-70b-instruct').
            max_tokens: Maximum tokens in response.
            temperature: Sampling temperature.

        Returns:
            LLMResponse with content and reasoning content, if any.

        Raises:
            UpstreamError: on timeout, transport failure or an error status.
        """
        kwargs: dict[str, Any] = {
            # openai/ routes LiteLLM to the generic OpenAI-compatible client
            "model": f"openai/{model}",
            "messages": self._sanitize_messages(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
            "api_base": self.api_base,
            "request_timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        extra_body = self._extra_body()
        if extra_body:
            kwargs["extra_body"] = extra_body

        if logging.getLogger("nimbridge").isEnabledFor(logging.DEBUG):
            logger.debug(
                "litellm_request",
                model=kwargs["model"],
                message_count=len(kwargs["messages"]),
                max_tokens=kwargs["max_tokens"],
                temperature=temperature,
            )

        try:
            response = await asyncio.wait_for(acompletion(**kwargs), timeout=self.timeout + 30)
        except asyncio.TimeoutError as e:
            logger.error("llm_call_timeout", model=model)
            raise UpstreamError("Upstream request timed out", status_code=504) from e
        except Exception as e:
            status = getattr(e, "status_code", None)
            error_msg = self._mask(str(e))
            logger.error("llm_call_failed", model=model, status=status, error=error_msg)
            raise UpstreamError(error_msg, status_code=status if isinstance(status, int) else 500) from e

        return self._parse_response(response)

    def _parse_response(self, response: Any) -> LLMResponse:
        """Parse LiteLLM response into our standard format."""
        choice = response.choices[0]
        message = choice.message

        usage = {}
        if getattr(response, "usage", None):
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        return LLMResponse(
            content=message.content,
            role=getattr(message, "role", None) or "assistant",
            finish_reason=choice.finish_reason or "stop",
            usage=usage,
            reasoning_content=getattr(message, "reasoning_content", None) or None,
        )

    async def open_stream(
        self,
        messages: list[dict[str, Any]],
        model: str,
        max_tokens: int = 2048,
        temperature: float = 0.6,
    ) -> UpstreamStream:
        body: dict[str, Any] = {
            "model": model,
            "messages": self._sanitize_messages(messages),
            "max_tokens": max(1, max_tokens),
            "temperature": temperature,
            "stream": True,
        }
        extra_body = self._extra_body()
        if extra_body:
            body.update(extra_body)

        headers = {"Content-Type": "application/json", "Accept": "text/event-stream"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        client = self._http_client()
        request = client.build_request("POST", f"{self.api_base}/chat/completions", json=body, headers=headers)
        try:
            response = await client.send(request, stream=True)
        except httpx.TimeoutException as e:
            logger.error("llm_stream_timeout", model=model)
            raise UpstreamError("Upstream request timed out", status_code=504) from e
        except httpx.HTTPError as e:
            error_msg = self._mask(str(e))
            logger.error("llm_stream_failed", model=model, error=error_msg)
            raise UpstreamError(error_msg or type(e).__name__, status_code=502) from e

        if response.status_code >= 400:
            raw = await response.aread()
            await response.aclose()
            error_msg = self._mask(raw.decode("utf-8", errors="replace")[:500]) or response.reason_phrase
            logger.error("llm_stream_failed", model=model, status=response.status_code, error=error_msg)
            raise UpstreamError(error_msg, status_code=response.status_code)

        return _HttpxStream(response)

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None
