"""Per-conversation memory: storage, summarization and scheduling."""

from nimbridge.memory.scheduler import SummarizationScheduler
from nimbridge.memory.store import MemoryRecord, MemoryStore, build_memory_store
from nimbridge.memory.summarizer import Summarizer

__all__ = ["MemoryRecord", "MemoryStore", "SummarizationScheduler", "Summarizer", "build_memory_store"]
