"""In-band commands answered locally instead of being sent upstream."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Awaitable, Callable

from nimbridge.logging import get_logger

if TYPE_CHECKING:
    from nimbridge.memory.store import MemoryStore

logger = get_logger(__name__)


class Command(str, Enum):
    WIPE = "wipe"
    WIPE_ALL = "wipe_all"
    MEMORY = "memory"


_ALIASES: dict[str, Command] = {
    "/wipe": Command.WIPE,
    "/forget": Command.WIPE,
    "/reset": Command.WIPE,
    "/wipe-all": Command.WIPE_ALL,
    "/wipe_all": Command.WIPE_ALL,
    "/forget-all": Command.WIPE_ALL,
    "/memory": Command.MEMORY,
}


def parse_command(content: str) -> Command | None:
    """Match the final message against the closed set of commands."""
    return _ALIASES.get(content.strip().lower())


@dataclass(frozen=True)
class CommandReply:
    command: Command
    content: str


class CommandHandler:
    """Dispatch recognized commands against the memory store."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store
        self._handlers: dict[Command, Callable[[str], Awaitable[str]]] = {
            Command.WIPE: self._wipe,
            Command.WIPE_ALL: self._wipe_all,
            Command.MEMORY: self._show,
        }

    async def handle(self, content: str, conversation_id: str) -> CommandReply | None:
        """Return the reply if *content* is a command, else None."""
        command = parse_command(content)
        if command is None:
            return None
        logger.info("command_received", command=command.value, conversation_id=conversation_id)
        try:
            reply = await self._handlers[command](conversation_id)
        except Exception:
            logger.exception("Command failed", command=command.value, conversation_id=conversation_id)
            reply = "Memory operation failed. Please try again."
        return CommandReply(command=command, content=reply)

    async def _wipe(self, conversation_id: str) -> str:
        removed = await self.store.delete(conversation_id)
        if removed:
            return "Memory for this conversation has been wiped. The story starts fresh."
        return "There was no stored memory for this conversation."

    async def _wipe_all(self, conversation_id: str) -> str:
        count = await self.store.clear()
        return f"All stored memory has been wiped ({count} conversation(s))."

    async def _show(self, conversation_id: str) -> str:
        record = await self.store.peek(conversation_id)
        if record is None:
            return "No memory stored for this conversation yet."
        return (
            f"Persona:\n{record.core or '(none)'}\n\n"
            f"Summary:\n{record.summary or '(none)'}\n\n"
            f"Scene:\n{record.scene or '(none)'}\n\n"
            f"Last summarized at message {record.last_summary_at}."
        )
