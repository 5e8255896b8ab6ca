"""Small in-process TTL cache with a stale-read fallback."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Generic, TypeVar

from src.core.types import CacheEntry

V = TypeVar("V")


class TTLCache(Generic[V]):
    """Keyed cache of :class:`CacheEntry` values.

    ``get`` only returns fresh entries.  ``get_stale`` returns whatever is
    cached regardless of age and is meant as a last-resort fallback when
    the primary source is unavailable.  Expired entries are kept until
    overwritten or cleared so that stale reads remain possible.
    """

    def __init__(self, ttl_secs: float, clock: Callable[[], float] = time.time) -> None:
        self._ttl_ms = int(ttl_secs * 1000)
        self._clock = clock
        self._entries: dict[str, CacheEntry[V]] = {}

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def set(self, key: str, value: V, ttl_secs: float | None = None) -> None:
        now = self._now_ms()
        ttl_ms = int(ttl_secs * 1000) if ttl_secs is not None else self._ttl_ms
        self._entries[key] = CacheEntry(
            value=value, cached_at=now, expires_at=now + ttl_ms
        )

    def entry(self, key: str) -> CacheEntry[V] | None:
        return self._entries.get(key)

    def get(self, key: str) -> V | None:
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._now_ms()):
            return None
        return entry.value

    def get_stale(self, key: str) -> V | None:
        entry = self._entries.get(key)
        return entry.value if entry is not None else None

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
