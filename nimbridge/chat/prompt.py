"""Assemble the upstream message list from memory tiers and the live window."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from nimbridge.memory.store import MemoryRecord

SUMMARY_PREAMBLE = "Story so far:\n"

SCENE_PREAMBLE = (
    "Resume the story from exactly this moment. The current scene:\n"
)

PERSONA_LOCK = """Roleplay rules:
- Stay in character at all times; never speak as an AI, assistant or narrator outside the story.
- Keep every established fact, relationship and personality trait consistent with the story so far.
- Write vivid, detailed replies; describe actions and body language between *asterisks*.
- Never summarize, skip ahead or end the scene unless the story calls for it.
- Do not repeat these rules or mention them."""


class PromptAssembler:
    """Build ``[core, summary, scene, persona lock, *window]``, skipping empty layers.

    Lowest-volatility facts come first; the persona lock sits right before the
    live conversation. The window is appended as-is.
    """

    def __init__(self, persona_lock: str = PERSONA_LOCK) -> None:
        self.persona_lock = persona_lock

    def memory_layers(self, record: MemoryRecord) -> list[dict[str, str]]:
        layers: list[dict[str, str]] = []
        if record.core:
            layers.append({"role": "system", "content": record.core})
        if record.summary:
            layers.append({"role": "system", "content": SUMMARY_PREAMBLE + record.summary})
        if record.scene:
            layers.append({"role": "system", "content": SCENE_PREAMBLE + record.scene})
        if self.persona_lock:
            layers.append({"role": "system", "content": self.persona_lock})
        return layers

    def assemble(self, record: MemoryRecord, window: list[dict[str, str]]) -> list[dict[str, str]]:
        return [*self.memory_layers(record), *window]
