"""Client-facing model aliases mapped onto upstream NIM models."""

from __future__ import annotations

DEFAULT_MODEL_ALIASES: dict[str, str] = {
    "gpt-3.5-turbo": "nvidia/llama-3.1-nemotron-ultra-253b-v1",
    "gpt-4": "qwen/qwen3-coder-480b-a35b-instruct",
    "gpt-4-turbo": "moonshotai/kimi-k2-instruct-0905",
    "gpt-4o": "deepseek-ai/deepseek-v3.1",
    "claude-3-opus": "openai/gpt-oss-120b",
    "claude-3-sonnet": "openai/gpt-oss-20b",
    "gemini-pro": "qwen/qwen3-next-80b-a3b-thinking",
}

_LARGE_FALLBACK = "meta/llama-3.1-405b-instruct"
_MEDIUM_FALLBACK = "meta/llama-3.1-70b-instruct"
_SMALL_FALLBACK = "meta/llama-3.1-8b-instruct"


class ModelRegistry:
    """Resolve client model names; unknown names fall back by size hints in the name."""

    def __init__(self, overrides: dict[str, str] | None = None) -> None:
        self.aliases = {**DEFAULT_MODEL_ALIASES, **(overrides or {})}

    def names(self) -> list[str]:
        return list(self.aliases)

    def resolve(self, model: str | None) -> str:
        if model and model in self.aliases:
            return self.aliases[model]
        lower = (model or "").lower()
        if "gpt-4" in lower or "claude-opus" in lower or "405b" in lower:
            return _LARGE_FALLBACK
        if "claude" in lower or "gemini" in lower or "70b" in lower:
            return _MEDIUM_FALLBACK
        return _SMALL_FALLBACK
