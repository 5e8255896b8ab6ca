"""Price source interface and a concurrent per-symbol base class."""

from __future__ import annotations

import abc
import asyncio
import math
from collections.abc import Iterable

import structlog

logger = structlog.stdlib.get_logger()


class PriceSource(abc.ABC):
    """Best-effort latest prices for a set of symbols.

    A symbol without a price is simply missing from the returned mapping;
    that is a normal outcome, not an error.
    """

    @abc.abstractmethod
    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        """Return ``{symbol: price}`` for the symbols that could be priced."""

    async def close(self) -> None:
        """Release resources.  No-op by default."""


def _usable(price: object) -> bool:
    return (
        isinstance(price, (int, float))
        and not isinstance(price, bool)
        and math.isfinite(price)
        and price > 0
    )


class PerSymbolPriceSource(PriceSource):
    """Base for sources that quote one symbol per request.

    Subclasses implement :meth:`fetch_price`; symbols are fetched
    concurrently and a failure for one symbol never affects the others.
    """

    @abc.abstractmethod
    async def fetch_price(self, symbol: str) -> float | None:
        """Return the latest price for *symbol*, or None if unavailable."""

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        unique = sorted(set(symbols))
        results = await asyncio.gather(
            *(self.fetch_price(s) for s in unique),
            return_exceptions=True,
        )

        prices: dict[str, float] = {}
        for symbol, result in zip(unique, results):
            if isinstance(result, BaseException):
                logger.warning(
                    "price_fetch_failed",
                    symbol=symbol,
                    error=f"{type(result).__name__}: {result}",
                )
                continue
            if _usable(result):
                prices[symbol] = float(result)  # type: ignore[arg-type]
        return prices
