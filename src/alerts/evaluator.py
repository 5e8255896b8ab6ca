"""Pure alert evaluation — decides which alerts notify on a price tick.

Nothing in this module performs I/O; callers supply prices, prior state
and the evaluation timestamp (epoch milliseconds).
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from src.core.config import EvaluationConfig
from src.core.types import (
    AlertDirection,
    AlertRecord,
    AlertStateSnapshot,
    AlertStatus,
    EvaluationResult,
    PriceNotification,
    SkippedAlert,
    SkipReason,
)

_DEFAULT_CONFIG = EvaluationConfig()


def condition_met(alert: AlertRecord, price: float) -> bool:
    """Return True if *price* is on the alert's side of its threshold."""
    if alert.direction == AlertDirection.ABOVE:
        return price >= alert.threshold
    return price <= alert.threshold


def price_change_pct(price: float, reference: float) -> float:
    """Absolute percentage move from *reference* to *price*."""
    return abs(price - reference) / reference * 100.0


def evaluate(
    alert: AlertRecord,
    price: float,
    prev_state: AlertStateSnapshot | None,
    now: int,
    config: EvaluationConfig = _DEFAULT_CONFIG,
) -> tuple[bool, AlertStateSnapshot]:
    """Evaluate one alert against one price.

    A rising edge (condition newly met) always notifies.  While the
    condition stays met, a repeat notification needs both a price move of
    at least ``price_change_threshold_pct`` from the last notified price
    and ``price_change_cooldown_ms`` since the last notification.  A
    falling edge keeps the notification history, so the next crossing is
    a fresh rising edge.

    Returns:
        (notify, next_state)
    """
    met = condition_met(alert, price)
    already_reported = prev_state.last_condition_met if prev_state else False

    last_triggered_at = prev_state.last_triggered_at if prev_state else None
    last_notified_price = prev_state.last_notified_price if prev_state else None
    last_notified_at = prev_state.last_notified_at if prev_state else None

    notify = False
    if met and not already_reported:
        notify = True
        last_triggered_at = now
        last_notified_price = price
        last_notified_at = now
    elif met and last_notified_price is not None and last_notified_price > 0:
        change = price_change_pct(price, last_notified_price)
        elapsed = (
            now - last_notified_at if last_notified_at is not None else float("inf")
        )
        if (
            change >= config.price_change_threshold_pct
            and elapsed >= config.price_change_cooldown_ms
        ):
            notify = True
            last_notified_price = price
            last_notified_at = now

    next_state = AlertStateSnapshot(
        last_condition_met=met,
        last_price=price,
        last_triggered_at=last_triggered_at,
        last_notified_price=last_notified_price,
        last_notified_at=last_notified_at,
    )
    return notify, next_state


def evaluate_all(
    alerts: Iterable[AlertRecord],
    price_by_symbol: Mapping[str, float],
    state_by_alert_id: Mapping[str, AlertStateSnapshot] | None = None,
    now: int = 0,
    config: EvaluationConfig = _DEFAULT_CONFIG,
) -> EvaluationResult:
    """Evaluate a batch of alerts.

    Inactive alerts and alerts without a price are skipped with a reason
    and produce no state update.  State updates are only emitted when the
    computed state differs from the previous one.
    """
    states = state_by_alert_id or {}
    result = EvaluationResult()

    for alert in alerts:
        if alert.status != AlertStatus.ACTIVE:
            result.skipped.append(SkippedAlert(alert=alert, reason=SkipReason.INACTIVE))
            continue

        price = price_by_symbol.get(alert.symbol)
        if price is None:
            result.skipped.append(
                SkippedAlert(alert=alert, reason=SkipReason.MISSING_PRICE)
            )
            continue

        prev_state = states.get(alert.id)
        notify, next_state = evaluate(alert, price, prev_state, now, config)

        if notify:
            result.notifications.append(PriceNotification(alert=alert, price=price))

        if prev_state is None or prev_state.model_dump() != next_state.model_dump():
            result.state_updates[alert.id] = next_state

    return result
