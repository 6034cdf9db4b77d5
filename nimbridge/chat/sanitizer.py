"""Clamp message size and window length on a working copy of the history."""

from __future__ import annotations

from typing import Any

_ROLES = frozenset({"system", "user", "assistant"})


def content_text(content: Any) -> str:
    """Flatten OpenAI content (string or list of parts) into plain text."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and isinstance(item.get("text"), str):
                parts.append(item["text"])
            elif isinstance(item, str):
                parts.append(item)
        return "".join(parts)
    return "" if content is None else str(content)


class MessageSanitizer:
    """Truncate each message's tail to ``max_message_chars`` and keep the last ``max_window``."""

    def __init__(self, max_message_chars: int = 8000, max_window: int = 80) -> None:
        self.max_message_chars = max_message_chars
        self.max_window = max_window

    def normalize(self, message: Any) -> dict[str, str]:
        if not isinstance(message, dict):
            return {"role": "user", "content": content_text(message)}
        role = message.get("role")
        return {
            "role": role if role in _ROLES else "user",
            "content": content_text(message.get("content")),
        }

    def clamp(self, messages: list[Any]) -> list[dict[str, str]]:
        """Normalized copies with content cut to the character cap; no windowing."""
        out: list[dict[str, str]] = []
        for raw in messages:
            msg = self.normalize(raw)
            if len(msg["content"]) > self.max_message_chars:
                msg["content"] = msg["content"][:self.max_message_chars]
            out.append(msg)
        return out

    def sanitize(self, messages: list[Any]) -> list[dict[str, str]]:
        window = messages[-self.max_window:] if self.max_window > 0 else []
        return self.clamp(window)
