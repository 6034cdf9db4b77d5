"""Storage backends for conversation memory records.

Every backend stores one serialized record (a JSON string) per conversation
id and replaces it whole on save, so a reader never sees a mix of old and new
fields.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Protocol

import redis.asyncio as redis

from nimbridge.utils.helpers import atomic_write_text, ensure_dir, filename_to_key, key_to_filename

_SUFFIX = ".json"


class MemoryBackend(Protocol):
    name: str

    async def load(self, key: str) -> str | None: ...
    async def save(self, key: str, payload: str) -> None: ...
    async def delete(self, key: str) -> bool: ...
    async def clear(self) -> int: ...
    async def keys(self) -> list[str]: ...


class InMemoryBackend:
    """Volatile dict-backed storage; records vanish on process restart."""

    name = "memory"

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def load(self, key: str) -> str | None:
        return self._data.get(key)

    async def save(self, key: str, payload: str) -> None:
        self._data[key] = payload

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def clear(self) -> int:
        count = len(self._data)
        self._data.clear()
        return count

    async def keys(self) -> list[str]:
        return list(self._data)


class FileBackend:
    """One ``<id>.json`` file per conversation, written atomically.

    Ids are percent-encoded into file names, so any client string maps to
    its own file and ``keys()`` decodes back to the original ids.
    """

    name = "file"

    def __init__(self, directory: Path) -> None:
        self.directory = ensure_dir(directory.expanduser())

    def _path(self, key: str) -> Path:
        return self.directory / f"{key_to_filename(key)}{_SUFFIX}"

    async def load(self, key: str) -> str | None:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None

    async def save(self, key: str, payload: str) -> None:
        await asyncio.to_thread(atomic_write_text, self._path(key), payload)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink)
        except FileNotFoundError:
            return False
        return True

    def _clear_sync(self) -> int:
        count = 0
        for path in self.directory.glob(f"*{_SUFFIX}"):
            try:
                path.unlink()
                count += 1
            except FileNotFoundError:
                continue
        return count

    async def clear(self) -> int:
        return await asyncio.to_thread(self._clear_sync)

    def _keys_sync(self) -> list[str]:
        return sorted(filename_to_key(p.stem) for p in self.directory.glob(f"*{_SUFFIX}"))

    async def keys(self) -> list[str]:
        return await asyncio.to_thread(self._keys_sync)


class RedisBackend:
    """Remote key-value storage on ``redis.asyncio``; one string key per record."""

    name = "redis"

    def __init__(self, client: redis.Redis, *, prefix: str = "nimbridge:memory:", ttl_seconds: int | None = None) -> None:
        self.client = client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisBackend:
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def load(self, key: str) -> str | None:
        raw = await self.client.get(self._key(key))
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    async def save(self, key: str, payload: str) -> None:
        await self.client.set(self._key(key), payload, ex=self.ttl_seconds)

    async def delete(self, key: str) -> bool:
        return bool(await self.client.delete(self._key(key)))

    async def clear(self) -> int:
        keys = [k async for k in self.client.scan_iter(match=f"{self.prefix}*")]
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def keys(self) -> list[str]:
        out: list[str] = []
        async for k in self.client.scan_iter(match=f"{self.prefix}*"):
            if isinstance(k, bytes):
                k = k.decode("utf-8")
            out.append(k[len(self.prefix):])
        return sorted(out)
