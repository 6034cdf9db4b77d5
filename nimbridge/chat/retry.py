"""Bounded, quality-gated re-invocation of the completion call."""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any

from nimbridge.logging import get_logger

if TYPE_CHECKING:
    from nimbridge.providers.base import LLMProvider, LLMResponse

logger = get_logger(__name__)

_ACTION_MARKER_RE = re.compile(r"\*[^*\n]+\*")


@dataclass(frozen=True)
class CompletionRequest:
    messages: list[dict[str, Any]]
    model: str
    temperature: float = 0.6
    max_tokens: int = 2048


@dataclass
class CompletionResult:
    response: LLMResponse
    attempts: int
    temperature: float
    accepted: bool


def meets_quality(text: str, min_words: int) -> bool:
    """True when *text* is long enough and contains an ``*action*`` marker."""
    return len(text.split()) >= min_words and _ACTION_MARKER_RE.search(text) is not None


class RetryController:
    """Re-call upstream with a hotter temperature while replies are too thin.

    At most ``max_retries`` extra calls are made; the last reply is returned
    whether or not it passes. Upstream errors are raised immediately and are
    never retried here.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        max_retries: int = 5,
        min_response_words: int = 50,
        temperature_step: float = 0.05,
        max_temperature: float = 1.0,
        enabled: bool = True,
    ) -> None:
        self.provider = provider
        self.max_retries = max_retries if enabled else 0
        self.min_response_words = min_response_words
        self.temperature_step = temperature_step
        self.max_temperature = max_temperature

    def next_request(self, request: CompletionRequest) -> CompletionRequest:
        temperature = min(self.max_temperature, round(request.temperature + self.temperature_step, 4))
        return replace(request, temperature=temperature)

    async def run(self, request: CompletionRequest) -> CompletionResult:
        attempt = 0
        while True:
            response = await self.provider.chat(
                messages=request.messages,
                model=request.model,
                max_tokens=request.max_tokens,
                temperature=request.temperature,
            )
            accepted = meets_quality(response.text, self.min_response_words)
            if accepted or attempt >= self.max_retries:
                if not accepted:
                    logger.warning(
                        "Returning reply below quality bar after retries",
                        attempts=attempt + 1,
                        words=len(response.text.split()),
                    )
                return CompletionResult(
                    response=response,
                    attempts=attempt + 1,
                    temperature=request.temperature,
                    accepted=accepted,
                )

            logger.info(
                "retrying_thin_reply",
                attempt=attempt + 1,
                words=len(response.text.split()),
                temperature=request.temperature,
            )
            request = self.next_request(request)
            attempt += 1
