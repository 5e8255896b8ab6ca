"""Core module — config, types, logging."""

from src.core.config import Settings, get_settings, load_settings, reset_settings
from src.core.logging import bind_run_context, setup_logging
from src.core.types import (
    AlertChannel,
    AlertDirection,
    AlertRecord,
    AlertStateSnapshot,
    AlertStatus,
    CacheEntry,
    DeliveryAttempt,
    DeliveryStatus,
    EvaluationResult,
    PriceNotification,
    RunStatus,
    RunSummary,
    SkippedAlert,
    SkipReason,
    now_ms,
)

__all__ = [
    "AlertChannel",
    "AlertDirection",
    "AlertRecord",
    "AlertStateSnapshot",
    "AlertStatus",
    "CacheEntry",
    "DeliveryAttempt",
    "DeliveryStatus",
    "EvaluationResult",
    "PriceNotification",
    "RunStatus",
    "RunSummary",
    "Settings",
    "SkipReason",
    "SkippedAlert",
    "bind_run_context",
    "get_settings",
    "load_settings",
    "now_ms",
    "reset_settings",
    "setup_logging",
]
