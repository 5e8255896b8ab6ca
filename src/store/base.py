"""Durable key-value store interface and an in-memory implementation."""

from __future__ import annotations

import abc
import time
from collections.abc import Callable

from src.core.types import CacheEntry


class KeyValueStore(abc.ABC):
    """String key → string value store with optional per-key TTL."""

    @abc.abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value for *key*, or None if absent or expired."""

    @abc.abstractmethod
    async def put(self, key: str, value: str, ttl_secs: float | None = None) -> None:
        """Store *value* under *key*, expiring after *ttl_secs* if given."""

    @abc.abstractmethod
    async def delete(self, key: str) -> None:
        """Remove *key* if present."""

    async def close(self) -> None:
        """Release resources.  No-op by default."""


class MemoryKeyValueStore(KeyValueStore):
    """Process-local store, mainly for tests and dry runs.

    Entries without a TTL never expire.
    """

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, CacheEntry[str]] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if not entry.is_fresh(self._now_ms()):
            del self._entries[key]
            return None
        return entry.value

    async def put(self, key: str, value: str, ttl_secs: float | None = None) -> None:
        now = self._now_ms()
        expires_at = now + int(ttl_secs * 1000) if ttl_secs is not None else 2**63 - 1
        self._entries[key] = CacheEntry[str](
            value=value, cached_at=now, expires_at=expires_at
        )

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def keys(self) -> list[str]:
        return list(self._entries)
