"""Tiered per-conversation memory: core persona, rolling summary, scene snapshot."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

from nimbridge.logging import get_logger
from nimbridge.memory.backends import FileBackend, InMemoryBackend, MemoryBackend, RedisBackend

if TYPE_CHECKING:
    from nimbridge.config.schema import MemoryConfig

logger = get_logger(__name__)


@dataclass(frozen=True)
class MemoryRecord:
    """Memory held for one conversation.

    ``core`` is written once when the record is created. ``summary`` and
    ``scene`` only change after a successful summarization round, and
    ``last_summary_at`` (message count at that round) never goes down.
    """

    core: str
    summary: str = ""
    scene: str = ""
    last_summary_at: int = 0
    updated_at: float = field(default_factory=time.time)

    def to_json(self) -> str:
        return json.dumps(
            {
                "core": self.core,
                "summary": self.summary,
                "scene": self.scene,
                "lastSummaryAt": self.last_summary_at,
                "updatedAt": self.updated_at,
            },
            ensure_ascii=False,
        )

    @classmethod
    def from_json(cls, raw: str) -> MemoryRecord:
        data: dict[str, Any] = json.loads(raw)
        return cls(
            core=str(data.get("core") or ""),
            summary=str(data.get("summary") or ""),
            scene=str(data.get("scene") or ""),
            last_summary_at=int(data.get("lastSummaryAt") or 0),
            updated_at=float(data.get("updatedAt") or 0.0),
        )


class MemoryStore:
    """Keyed store of :class:`MemoryRecord` over a pluggable backend.

    Writes are whole-record replacements. Concurrent updates of the same id
    are last-writer-wins; there is no locking.
    """

    def __init__(self, backend: MemoryBackend | None = None, *, default_core: str = "") -> None:
        self.backend: MemoryBackend = backend or InMemoryBackend()
        self.default_core = default_core

    async def peek(self, conversation_id: str) -> MemoryRecord | None:
        """Return the stored record without creating one."""
        raw = await self.backend.load(conversation_id)
        if raw is None:
            return None
        try:
            return MemoryRecord.from_json(raw)
        except (ValueError, TypeError) as e:
            logger.warning("Discarding unreadable memory record", conversation_id=conversation_id, error=str(e))
            return None

    async def get(self, conversation_id: str) -> MemoryRecord:
        """Return the record for *conversation_id*, creating a default one if absent."""
        record = await self.peek(conversation_id)
        if record is not None:
            return record
        record = MemoryRecord(core=self.default_core)
        await self.backend.save(conversation_id, record.to_json())
        logger.info("memory_record_created", conversation_id=conversation_id, backend=self.backend.name)
        return record

    async def update(
        self,
        conversation_id: str,
        *,
        summary: str | None = None,
        scene: str | None = None,
        last_summary_at: int | None = None,
        core: str | None = None,
    ) -> MemoryRecord:
        """Merge the given fields into the stored record and persist it whole.

        Empty summary/scene values are ignored, ``core`` only applies when the
        record does not exist yet, and ``last_summary_at`` is clamped so it
        never decreases.
        """
        current = await self.peek(conversation_id)
        if current is None:
            current = MemoryRecord(core=core if core is not None else self.default_core)

        merged = replace(
            current,
            summary=summary.strip() if summary and summary.strip() else current.summary,
            scene=scene.strip() if scene and scene.strip() else current.scene,
            last_summary_at=max(current.last_summary_at, last_summary_at or 0),
            updated_at=time.time(),
        )
        await self.backend.save(conversation_id, merged.to_json())
        logger.debug(
            "memory_record_updated",
            conversation_id=conversation_id,
            summary_chars=len(merged.summary),
            scene_chars=len(merged.scene),
            last_summary_at=merged.last_summary_at,
        )
        return merged

    async def delete(self, conversation_id: str) -> bool:
        removed = await self.backend.delete(conversation_id)
        logger.info("memory_record_deleted", conversation_id=conversation_id, removed=removed)
        return removed

    async def clear(self) -> int:
        count = await self.backend.clear()
        logger.warning("memory_cleared", records=count, backend=self.backend.name)
        return count

    async def list_ids(self) -> list[str]:
        return await self.backend.keys()


def build_memory_store(config: MemoryConfig) -> MemoryStore:
    """Create a store for the configured backend."""
    backend: MemoryBackend
    if config.backend == "file":
        backend = FileBackend(Path(config.directory))
    elif config.backend == "redis":
        backend = RedisBackend.from_url(
            config.redis_url,
            prefix=config.redis_prefix,
            ttl_seconds=config.redis_ttl_seconds,
        )
    else:
        backend = InMemoryBackend()
    return MemoryStore(backend, default_core=config.default_core_persona)
