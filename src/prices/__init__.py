"""Price sources."""

from src.prices.base import PerSymbolPriceSource, PriceSource
from src.prices.cached import CachedPriceSource
from src.prices.static import StaticPriceSource

__all__ = ["CachedPriceSource", "PerSymbolPriceSource", "PriceSource", "StaticPriceSource"]
