"""Pure functions that turn triggered alerts into notification content."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from src.core.types import AlertDirection


def format_title(symbol: str) -> str:
    return f"{symbol} Alert"


def format_body(symbol: str, price: float, threshold: float, direction: AlertDirection) -> str:
    """E.g. ``AAPL is now $205.00 (above your target of $200.00)``."""
    side = "above" if direction == AlertDirection.ABOVE else "below"
    return f"{symbol} is now ${price:.2f} ({side} your target of ${threshold:.2f})"


def format_data(
    alert_id: str,
    symbol: str,
    price: float,
    threshold: float,
    direction: AlertDirection,
) -> dict[str, Any]:
    """Payload the mobile client uses to open the alert."""
    return {
        "alertId": alert_id,
        "symbol": symbol,
        "price": price,
        "threshold": threshold,
        "direction": direction.value,
    }


def format_notification(
    alert_id: str,
    symbol: str,
    price: float,
    threshold: float,
    direction: AlertDirection,
) -> tuple[str, str, dict[str, Any]]:
    """Return ``(title, body, data)`` for a triggered alert."""
    return (
        format_title(symbol),
        format_body(symbol, price, threshold, direction),
        format_data(alert_id, symbol, price, threshold, direction),
    )


def log_id(alert_id: str, now_ms: int, retry: bool = False) -> str:
    """Delivery log id, ``{alert_id}_{ms}`` or ``{alert_id}_retry_{ms}``."""
    return f"{alert_id}_retry_{now_ms}" if retry else f"{alert_id}_{now_ms}"


def iso_timestamp(epoch_ms: int) -> str:
    return (
        datetime.fromtimestamp(epoch_ms / 1000, tz=timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )
