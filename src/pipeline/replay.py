"""Manual re-send of a previously logged delivery."""

from __future__ import annotations

import structlog
from pydantic import BaseModel, Field

from src.core.types import DeliveryAttempt, DeliveryStatus, now_ms
from src.pipeline.delivery_log import DeliveryLog, DeliveryNotFoundError
from src.pipeline.formatters import format_notification, iso_timestamp, log_id
from src.push.dispatcher import NotificationDispatcher

logger = structlog.stdlib.get_logger()


class ReplayResult(BaseModel):
    """Outcome of :func:`replay_delivery`."""

    success: bool
    original_log_id: str
    new_log_id: str
    attempts: int = 0
    error: str | None = None
    error_kind: str | None = None
    should_cleanup_token: bool = False
    logs: list[str] = Field(default_factory=list)


async def replay_delivery(
    log_id_to_retry: str,
    delivery_log: DeliveryLog,
    dispatcher: NotificationDispatcher,
    now: int | None = None,
) -> ReplayResult:
    """Rebuild a logged notification, send it again and log the new attempt.

    The stored attempt is left untouched; the retry gets its own record
    with id ``{alert_id}_retry_{ms}``.

    Raises:
        DeliveryNotFoundError: If no attempt with that id was logged.
    """
    original = await delivery_log.get(log_id_to_retry)
    if original is None:
        raise DeliveryNotFoundError(f"No delivery log entry {log_id_to_retry!r}")

    ts = now if now is not None else now_ms()
    trail = [
        f"Replaying delivery {original.id}",
        f"  Alert: {original.alert_id} ({original.symbol} {original.direction.value} "
        f"{original.threshold})",
        f"  Previous status: {original.status.value}",
    ]

    title, body, data = format_notification(
        original.alert_id,
        original.symbol,
        original.price,
        original.threshold,
        original.direction,
    )
    outcome = await dispatcher.send(original.push_token, title, body, data)
    trail.extend(outcome.logs)

    attempt = DeliveryAttempt(
        id=log_id(original.alert_id, ts, retry=True),
        alert_id=original.alert_id,
        symbol=original.symbol,
        threshold=original.threshold,
        price=original.price,
        direction=original.direction,
        push_token=original.push_token,
        status=DeliveryStatus.SUCCESS if outcome.success else DeliveryStatus.FAILED,
        error_message=outcome.final_error,
        error_kind=outcome.error_kind.value if outcome.error_kind else None,
        attempt_count=outcome.attempts,
        sent_at=iso_timestamp(ts),
    )
    try:
        await delivery_log.record(attempt)
    except Exception as exc:
        logger.exception(
            "delivery_log_write_failed",
            log_id=attempt.id,
            alert_id=attempt.alert_id,
        )
        trail.append(f"Failed to record {attempt.id}: {exc}")
    else:
        trail.append(f"Recorded as {attempt.id}")

    logger.info(
        "delivery_replayed",
        original_log_id=original.id,
        new_log_id=attempt.id,
        success=outcome.success,
        attempts=outcome.attempts,
    )
    return ReplayResult(
        success=outcome.success,
        original_log_id=original.id,
        new_log_id=attempt.id,
        attempts=outcome.attempts,
        error=outcome.final_error,
        error_kind=attempt.error_kind,
        should_cleanup_token=bool(outcome.should_cleanup_token),
        logs=trail,
    )
