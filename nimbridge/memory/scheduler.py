"""Cooldown-gated decision of when to compress history into memory."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from nimbridge.logging import get_logger

if TYPE_CHECKING:
    from nimbridge.memory.store import MemoryRecord, MemoryStore
    from nimbridge.memory.summarizer import Summarizer

logger = get_logger(__name__)


class SummarizationScheduler:
    """Decide and run summarization rounds from persisted state.

    The trigger is recomputed on every request:
    ``window_length > trigger_threshold`` and at least ``cooldown`` messages
    since the last round.
    """

    def __init__(
        self,
        store: MemoryStore,
        summarizer: Summarizer,
        *,
        trigger_threshold: int = 60,
        cooldown: int = 40,
        keep_recent: int = 20,
        scene_window: int = 25,
        enabled: bool = True,
    ) -> None:
        self.store = store
        self.summarizer = summarizer
        self.trigger_threshold = trigger_threshold
        self.cooldown = cooldown
        self.keep_recent = keep_recent
        self.scene_window = scene_window
        self.enabled = enabled

    def should_summarize(self, window_length: int, record: MemoryRecord) -> bool:
        if not self.enabled:
            return False
        return (
            window_length > self.trigger_threshold
            and window_length - record.last_summary_at >= self.cooldown
        )

    def summary_slice(self, messages: list[dict[str, Any]], record: MemoryRecord) -> list[dict[str, Any]]:
        """Messages not yet folded into ``record.summary``, minus the recent tail.

        The tail kept out is at most half the conversation, so small
        thresholds still leave something to summarize. The previous round's
        tail is folded in now, since it was held back last time.
        """
        keep = min(self.keep_recent, len(messages) // 2)
        start = max(0, record.last_summary_at - keep)
        return messages[start:len(messages) - keep]

    async def maybe_summarize(
        self,
        conversation_id: str,
        messages: list[dict[str, Any]],
        record: MemoryRecord,
        *,
        model: str,
    ) -> MemoryRecord:
        """Run a summarization round if due; return the record to assemble from."""
        window_length = len(messages)
        if not self.should_summarize(window_length, record):
            return record

        started = time.perf_counter()
        older = self.summary_slice(messages, record)
        recent = messages[-self.scene_window:]

        summary = await self.summarizer.summarize(
            older,
            kind="summary",
            model=model,
            previous=record.summary,
        )
        scene = await self.summarizer.summarize(recent, kind="scene", model=model)
        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)

        if summary is None and scene is None:
            logger.warning(
                "Summarization round produced nothing; keeping previous memory",
                conversation_id=conversation_id,
                window_length=window_length,
                elapsed_ms=elapsed_ms,
            )
            return record

        updated = await self.store.update(
            conversation_id,
            summary=summary,
            scene=scene,
            last_summary_at=window_length,
        )
        logger.info(
            "summarization_round_done",
            conversation_id=conversation_id,
            window_length=window_length,
            summary_updated=summary is not None,
            scene_updated=scene is not None,
            elapsed_ms=elapsed_ms,
        )
        return updated
