"""Alert evaluation and the write-back alert state cache."""

from src.alerts.evaluator import condition_met, evaluate, evaluate_all, price_change_pct
from src.alerts.state_cache import CacheStats, FlushResult, StateCache, state_key

__all__ = [
    "CacheStats",
    "FlushResult",
    "StateCache",
    "condition_met",
    "evaluate",
    "evaluate_all",
    "price_change_pct",
    "state_key",
]
