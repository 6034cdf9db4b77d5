"""Derive a stable conversation key from an incoming request."""

from __future__ import annotations

import hashlib
import re
import uuid
from collections.abc import Mapping
from typing import Any

from nimbridge.chat.sanitizer import content_text
from nimbridge.errors import IdentityRequiredError

_MAX_ID_LEN = 128


class ChatIdentityResolver:
    """Resolve ``(conversation_id, source)``; first match wins.

    Order: header, body field, referer URL, hash of the first message,
    random ephemeral id. Without an explicit id the result depends only on
    the first message, so the next turn of the same chat finds its memory.
    """

    def __init__(
        self,
        *,
        header: str = "x-chat-id",
        body_fields: list[str] | None = None,
        referer_pattern: str = r"/chats?/([A-Za-z0-9_-]+)",
        required: bool = False,
    ) -> None:
        self.header = header.lower()
        self.body_fields = body_fields if body_fields is not None else ["chat_id", "conversation_id"]
        self.referer_re = re.compile(referer_pattern)
        self.required = required

    @staticmethod
    def _normalize(raw: Any) -> str | None:
        if not isinstance(raw, str):
            return None
        value = raw.strip()
        if not value:
            return None
        if len(value) > _MAX_ID_LEN:
            return "h-" + hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]
        return value

    def _from_headers(self, headers: Mapping[str, str]) -> str | None:
        for name, value in headers.items():
            if name.lower() == self.header:
                return self._normalize(value)
        return None

    def _from_body(self, body: Mapping[str, Any]) -> str | None:
        for field_name in self.body_fields:
            found = self._normalize(body.get(field_name))
            if found:
                return found
        return None

    def _from_referer(self, headers: Mapping[str, str]) -> str | None:
        referer = next((v for k, v in headers.items() if k.lower() in ("referer", "referrer")), None)
        if not referer:
            return None
        m = self.referer_re.search(referer)
        return self._normalize(m.group(1)) if m else None

    @staticmethod
    def _from_first_message(body: Mapping[str, Any]) -> str | None:
        messages = body.get("messages")
        if not isinstance(messages, list) or not messages or not isinstance(messages[0], Mapping):
            return None
        text = content_text(messages[0].get("content"))
        if not text:
            return None
        return "h-" + hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]

    def resolve(self, headers: Mapping[str, str], body: Mapping[str, Any]) -> tuple[str, str]:
        """Return the conversation id and which source produced it.

        Raises:
            IdentityRequiredError: when ``required`` is set and no header,
                body field or referer carries an id.
        """
        for source, finder in (
            ("header", lambda: self._from_headers(headers)),
            ("body", lambda: self._from_body(body)),
            ("referer", lambda: self._from_referer(headers)),
        ):
            found = finder()
            if found:
                return found, source

        if self.required:
            raise IdentityRequiredError(
                f"Missing conversation id: send the '{self.header}' header or a "
                f"'{self.body_fields[0] if self.body_fields else 'chat_id'}' field"
            )

        hashed = self._from_first_message(body)
        if hashed:
            return hashed, "first_message"
        return f"ephemeral-{uuid.uuid4().hex}", "ephemeral"
