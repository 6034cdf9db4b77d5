"""LLM-backed condensing of roleplay history into summary and scene text."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Literal

from nimbridge.logging import get_logger

if TYPE_CHECKING:
    from nimbridge.providers.base import LLMProvider

logger = get_logger(__name__)

SummaryKind = Literal["summary", "scene"]

_SHARED_RULES = (
    "Write entirely in-universe, as a narrator of the story. "
    "Never mention AI, language models, assistants, systems, prompts, chats, messages or users. "
    "Do not add commentary, disclaimers or meta notes."
)

_SUMMARY_INSTRUCTION = (
    "Summarize the roleplay story so far. Preserve character traits, relationships, emotions, "
    "goals, unresolved conflicts, promises, rules of the world, tone and important facts. "
    "Be concise but complete; keep events in order. " + _SHARED_RULES
)

_SCENE_INSTRUCTION = (
    "Describe the current scene in a few sentences so the story can resume seamlessly: "
    "where the characters are, what they are doing, their mood toward each other, and what "
    "was happening in the very last moments. " + _SHARED_RULES
)


def flatten_messages(messages: list[dict[str, Any]]) -> str:
    """Render messages as ``role: content`` lines, newline-joined, in order."""
    return "\n".join(f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages)


class Summarizer:
    """Condenses message history with low-temperature upstream calls.

    Failures never propagate: any error or empty answer yields ``None`` so the
    caller keeps the previous memory.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        temperature: float = 0.3,
        summary_max_tokens: int = 600,
        scene_max_tokens: int = 200,
        max_input_chars: int = 24000,
    ) -> None:
        self.provider = provider
        self.temperature = temperature
        self.max_input_chars = max_input_chars
        self._max_tokens: dict[str, int] = {"summary": summary_max_tokens, "scene": scene_max_tokens}

    @staticmethod
    def system_instruction(kind: SummaryKind) -> str:
        return _SUMMARY_INSTRUCTION if kind == "summary" else _SCENE_INSTRUCTION

    def build_prompt(
        self,
        messages: list[dict[str, Any]],
        kind: SummaryKind,
        previous: str = "",
    ) -> list[dict[str, str]]:
        body = flatten_messages(messages)
        if len(body) > self.max_input_chars:
            # keep the latest events
            body = body[-self.max_input_chars:]
        if previous:
            body = f"Earlier events:\n{previous}\n\nWhat happened next:\n{body}"
        return [
            {"role": "system", "content": self.system_instruction(kind)},
            {"role": "user", "content": body},
        ]

    async def summarize(
        self,
        messages: list[dict[str, Any]],
        *,
        kind: SummaryKind,
        model: str,
        previous: str = "",
    ) -> str | None:
        if not messages:
            return None
        prompt = self.build_prompt(messages, kind, previous)
        try:
            response = await self.provider.chat(
                messages=prompt,
                model=model,
                max_tokens=self._max_tokens[kind],
                temperature=self.temperature,
            )
        except Exception as e:
            logger.warning("Summarization failed", kind=kind, model=model, error=str(e))
            return None

        text = (response.content or "").strip()
        if not text:
            logger.warning("Summarization returned empty text", kind=kind, model=model)
            return None
        return text
