"""Caching wrapper around a :class:`PriceSource` with stale fallback."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable

import structlog

from src.core.config import PricesConfig
from src.prices.base import PriceSource
from src.store.ttl_cache import TTLCache

logger = structlog.stdlib.get_logger()


class CachedPriceSource(PriceSource):
    """Serves fresh cached prices and asks the inner source for the rest.

    When the inner source returns nothing for a symbol (or raises),
    a previously cached price is used regardless of age if
    ``allow_stale`` is set.
    """

    def __init__(
        self,
        inner: PriceSource,
        config: PricesConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        cfg = config or PricesConfig()
        self._inner = inner
        self._allow_stale = cfg.allow_stale
        self._cache: TTLCache[float] = TTLCache(ttl_secs=cfg.cache_ttl_secs, clock=clock)

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        wanted = set(symbols)
        prices: dict[str, float] = {}
        misses: set[str] = set()

        for symbol in wanted:
            cached = self._cache.get(symbol)
            if cached is None:
                misses.add(symbol)
            else:
                prices[symbol] = cached

        fetched: dict[str, float] = {}
        if misses:
            try:
                fetched = await self._inner.fetch_prices(misses)
            except Exception:
                logger.exception("price_source_failed", symbols=len(misses))

        for symbol in misses:
            if symbol in fetched:
                prices[symbol] = fetched[symbol]
                self._cache.set(symbol, fetched[symbol])
                continue
            if self._allow_stale:
                stale = self._cache.get_stale(symbol)
                if stale is not None:
                    logger.info("price_stale_fallback", symbol=symbol, price=stale)
                    prices[symbol] = stale

        return prices

    async def close(self) -> None:
        await self._inner.close()
