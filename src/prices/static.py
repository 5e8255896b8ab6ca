"""Fixed price table, for dry runs and tests."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from pathlib import Path

import yaml

from src.prices.base import PriceSource, _usable


class StaticPriceSource(PriceSource):
    """Serves prices from a mapping that callers may update between runs."""

    def __init__(self, prices: Mapping[str, float] | None = None) -> None:
        self.prices: dict[str, float] = {}
        self.update(prices or {})

    @classmethod
    def from_yaml(cls, path: str | Path) -> StaticPriceSource:
        """Load a ``SYMBOL: price`` mapping from a YAML file."""
        with open(path) as f:
            raw = yaml.safe_load(f)
        if not isinstance(raw, dict):
            raise ValueError(f"{path}: expected a mapping of symbol to price")
        return cls(raw)

    def update(self, prices: Mapping[str, float]) -> None:
        for symbol, price in prices.items():
            if _usable(price):
                self.prices[str(symbol).strip().upper()] = float(price)

    async def fetch_prices(self, symbols: Iterable[str]) -> dict[str, float]:
        return {s: self.prices[s] for s in set(symbols) if s in self.prices}
