"""Write-back cache of per-alert evaluation state.

Every state is kept in memory between runs; updates are acknowledged in
memory immediately and written to the durable store in batches, at most
once per flush interval.  If the process dies before a flush, at most one
interval's worth of updates is lost.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable

import structlog
from pydantic import BaseModel, ValidationError

from src.core.config import StateCacheConfig
from src.core.types import AlertStateSnapshot
from src.store.base import KeyValueStore

logger = structlog.stdlib.get_logger()


def state_key(alert_id: str) -> str:
    """Durable store key for an alert's state snapshot."""
    return f"alert:{alert_id}:state"


class FlushResult(BaseModel):
    """Outcome of a :meth:`StateCache.flush` call."""

    attempted: int = 0
    written: int = 0
    failed: int = 0
    skipped_reason: str | None = None


class CacheStats(BaseModel):
    """Point-in-time cache counters (ages in seconds, 0 if never)."""

    cached_states: int
    pending_writes: int
    cache_age_secs: float
    secs_since_last_flush: float


class StateCache:
    """In-process write-back cache over a :class:`KeyValueStore`.

    The pending-write queue is always a subset of the in-memory cache: a
    ``put`` lands in both, ``invalidate`` removes from both, and a reload
    from the store never overwrites an entry that is still queued.
    """

    def __init__(
        self,
        store: KeyValueStore,
        config: StateCacheConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._config = config or StateCacheConfig()
        self._clock = clock
        self._states: dict[str, AlertStateSnapshot] = {}
        self._pending: dict[str, AlertStateSnapshot] = {}
        self._loaded_at: float | None = None
        self._last_flush_at: float | None = None
        self._load_lock = asyncio.Lock()
        self._flush_lock = asyncio.Lock()

    # ── Properties ────────────────────────────────────────────────

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def cached_count(self) -> int:
        return len(self._states)

    def pending(self) -> dict[str, AlertStateSnapshot]:
        """Copy of the queued, not yet durable, updates."""
        return dict(self._pending)

    # ── Reads ─────────────────────────────────────────────────────

    def _is_fresh(self) -> bool:
        if not self._states or self._loaded_at is None:
            return False
        return (self._clock() - self._loaded_at) < self._config.cache_ttl_secs

    async def load_all(self, alert_ids: Iterable[str]) -> dict[str, AlertStateSnapshot]:
        """Return known states for *alert_ids*.

        Served from memory while the cache is populated and younger than
        ``cache_ttl_secs``; otherwise every id is read from the store
        concurrently.  Ids whose read or parse fails have no prior state.
        """
        ids = list(dict.fromkeys(alert_ids))
        async with self._load_lock:
            if self._is_fresh():
                return {i: self._states[i] for i in ids if i in self._states}

            logger.info("state_cache_loading", count=len(ids))
            loaded = await asyncio.gather(*(self._read(i) for i in ids))

            for alert_id, snapshot in zip(ids, loaded):
                if alert_id in self._pending:
                    self._states[alert_id] = self._pending[alert_id]
                elif snapshot is not None:
                    self._states[alert_id] = snapshot

            self._loaded_at = self._clock()
            result = {i: self._states[i] for i in ids if i in self._states}
            logger.info("state_cache_loaded", requested=len(ids), found=len(result))
            return result

    async def _read(self, alert_id: str) -> AlertStateSnapshot | None:
        try:
            raw = await self._store.get(state_key(alert_id))
        except Exception:
            logger.warning("state_read_failed", alert_id=alert_id, exc_info=True)
            return None
        if not raw:
            return None
        try:
            return AlertStateSnapshot.from_json(raw)
        except (ValidationError, ValueError):
            logger.warning("state_parse_failed", alert_id=alert_id)
            return None

    def get(self, alert_id: str) -> AlertStateSnapshot | None:
        """Memory-only lookup; never touches the store."""
        return self._states.get(alert_id)

    # ── Writes ────────────────────────────────────────────────────

    def put(self, alert_id: str, snapshot: AlertStateSnapshot) -> None:
        """Update memory now and queue the snapshot for the next flush."""
        self._states[alert_id] = snapshot
        self._pending[alert_id] = snapshot
        logger.debug(
            "state_update_queued",
            alert_id=alert_id,
            pending=len(self._pending),
        )

    async def flush(self, min_interval_secs: float | None = None) -> FlushResult:
        """Write queued snapshots to the store if the interval has passed.

        Args:
            min_interval_secs: Minimum seconds since the last successful
                flush. Defaults to ``kv_write_interval_secs``; pass 0 to
                force a flush (e.g. on shutdown).
        """
        interval = (
            self._config.kv_write_interval_secs
            if min_interval_secs is None
            else min_interval_secs
        )
        async with self._flush_lock:
            if not self._pending:
                return FlushResult(skipped_reason="empty")

            now = self._clock()
            since_last = (
                now - self._last_flush_at
                if self._last_flush_at is not None
                else float("inf")
            )
            if since_last < interval:
                logger.debug(
                    "state_flush_deferred",
                    pending=len(self._pending),
                    secs_since_last_flush=round(since_last, 1),
                    interval_secs=interval,
                )
                return FlushResult(skipped_reason="interval")

            batch = list(self._pending.items())
            logger.info("state_flush_started", pending=len(batch))
            outcomes = await asyncio.gather(
                *(self._write(alert_id, snapshot) for alert_id, snapshot in batch)
            )

            written = 0
            for (alert_id, snapshot), ok in zip(batch, outcomes):
                if not ok:
                    continue
                written += 1
                # A newer put during the write stays queued.
                if self._pending.get(alert_id) is snapshot:
                    del self._pending[alert_id]

            if written:
                self._last_flush_at = now
            result = FlushResult(
                attempted=len(batch),
                written=written,
                failed=len(batch) - written,
            )
            logger.info(
                "state_flush_finished",
                written=result.written,
                failed=result.failed,
                still_pending=len(self._pending),
            )
            return result

    async def _write(self, alert_id: str, snapshot: AlertStateSnapshot) -> bool:
        try:
            await self._store.put(state_key(alert_id), snapshot.to_json())
        except Exception:
            logger.exception("state_write_failed", alert_id=alert_id)
            return False
        return True

    # ── Removal ───────────────────────────────────────────────────

    def invalidate(self, alert_id: str) -> None:
        """Drop one alert from memory and the pending queue.

        Memory only: a flush already writing this id still lands in the
        store. Use :meth:`delete` when the alert itself is removed.
        """
        self._states.pop(alert_id, None)
        self._pending.pop(alert_id, None)

    async def delete(self, alert_id: str) -> None:
        """Purge an alert's state from memory, queue and durable store."""
        async with self._flush_lock:
            self.invalidate(alert_id)
            await self._store.delete(state_key(alert_id))

    def clear(self) -> None:
        """Drop everything and reset the load/flush timers."""
        self._states.clear()
        self._pending.clear()
        self._loaded_at = None
        self._last_flush_at = None

    def stats(self) -> CacheStats:
        now = self._clock()
        return CacheStats(
            cached_states=len(self._states),
            pending_writes=len(self._pending),
            cache_age_secs=now - self._loaded_at if self._loaded_at is not None else 0.0,
            secs_since_last_flush=(
                now - self._last_flush_at if self._last_flush_at is not None else 0.0
            ),
        )
