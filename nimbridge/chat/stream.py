"""Reassemble upstream server-sent-event bytes into client-facing frames."""

from __future__ import annotations

import json
from typing import Any, AsyncIterator

from nimbridge.logging import get_logger

logger = get_logger(__name__)

_DATA_PREFIX = b"data:"
_DONE = b"[DONE]"
DONE_FRAME = b"data: [DONE]\n\n"

THINK_OPEN = "<think>\n"
THINK_CLOSE = "</think>\n\n"

_REASONING_KEYS = ("reasoning_content", "reasoning")


def encode_frame(payload: dict[str, Any]) -> bytes:
    return b"data: " + json.dumps(payload, ensure_ascii=False, separators=(",", ":")).encode("utf-8") + b"\n\n"


class StreamMerger:
    """Per-stream state machine over raw SSE bytes.

    Incomplete trailing lines stay buffered until the next chunk, so a frame
    split across chunks is forwarded exactly as if it had arrived whole. The
    reasoning channel is dropped, or with ``show_reasoning`` spliced into the
    visible content between ``<think>`` markers.
    """

    def __init__(self, *, show_reasoning: bool = False) -> None:
        self.show_reasoning = show_reasoning
        self._buffer = b""
        self._reasoning_open = False
        self._finish_sent = False
        self._done_sent = False

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume a chunk and return the frames completed by it."""
        self._buffer += chunk
        *lines, self._buffer = self._buffer.split(b"\n")
        frames: list[bytes] = []
        for line in lines:
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)
        return frames

    def finish(self) -> list[bytes]:
        """Flush the buffer at end of stream and close the frame sequence."""
        frames: list[bytes] = []
        if self._buffer:
            line, self._buffer = self._buffer, b""
            frame = self._process_line(line)
            if frame is not None:
                frames.append(frame)
        if self._done_sent:
            return frames
        if self._reasoning_open:
            self._reasoning_open = False
            frames.append(encode_frame({"choices": [{"index": 0, "delta": {"content": "\n" + THINK_CLOSE}}]}))
        if not self._finish_sent:
            frames.append(encode_frame({"choices": [{"index": 0, "delta": {}, "finish_reason": "stop"}]}))
            self._finish_sent = True
        frames.append(DONE_FRAME)
        self._done_sent = True
        return frames

    async def merge(self, chunks: AsyncIterator[bytes]) -> AsyncIterator[bytes]:
        """Drive the state machine over an upstream byte iterator."""
        try:
            async for chunk in chunks:
                for frame in self.feed(chunk):
                    yield frame
        except Exception as e:
            logger.error("Upstream stream failed; closing downstream", error=str(e))
            return
        for frame in self.finish():
            yield frame

    def _process_line(self, line: bytes) -> bytes | None:
        line = line.rstrip(b"\r")
        if not line.startswith(_DATA_PREFIX):
            return None
        payload = line[len(_DATA_PREFIX):].strip()
        if payload == _DONE:
            self._done_sent = True
            return line + b"\n\n"
        try:
            data = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return line + b"\n\n"
        if isinstance(data, dict):
            self._rewrite_choices(data)
        return encode_frame(data) if isinstance(data, dict) else line + b"\n\n"

    def _rewrite_choices(self, data: dict[str, Any]) -> None:
        choices = data.get("choices")
        if not isinstance(choices, list):
            return
        for choice in choices:
            if not isinstance(choice, dict):
                continue
            if choice.get("finish_reason"):
                self._finish_sent = True
            delta = choice.get("delta")
            if isinstance(delta, dict):
                self._rewrite_delta(delta)

    def _rewrite_delta(self, delta: dict[str, Any]) -> None:
        reasoning = None
        for key in _REASONING_KEYS:
            value = delta.pop(key, None)
            if isinstance(value, str) and value and reasoning is None:
                reasoning = value
        content = delta.get("content")

        if not self.show_reasoning:
            delta["content"] = content or ""
            return

        combined = ""
        if reasoning:
            combined = reasoning if self._reasoning_open else THINK_OPEN + reasoning
            self._reasoning_open = True
        if content and self._reasoning_open:
            combined += THINK_CLOSE + content
            self._reasoning_open = False
        elif content:
            combined += content
        if combined:
            delta["content"] = combined
