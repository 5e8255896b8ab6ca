"""Alert pipeline — one scheduled evaluation run, end to end.

Each run:

1. lists active alerts and fetches prices for their distinct symbols;
2. loads prior state, evaluates, and queues state updates in the cache;
3. lets the cache flush if its write interval has elapsed;
4. sends every due notification and records one delivery attempt each.

An empty price map aborts the run before any state is touched.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import Counter
from collections.abc import Awaitable, Callable

import structlog

from src.alerts.evaluator import evaluate_all
from src.alerts.state_cache import StateCache
from src.core.config import EvaluationConfig
from src.core.logging import bind_run_context
from src.core.types import (
    AlertChannel,
    DeliveryAttempt,
    DeliveryStatus,
    PriceNotification,
    RunStatus,
    RunSummary,
    now_ms,
)
from src.pipeline.alert_source import AlertSource
from src.pipeline.delivery_log import DeliveryLog
from src.pipeline.formatters import format_notification, iso_timestamp, log_id
from src.prices.base import PriceSource
from src.push.dispatcher import NotificationDispatcher, mask_token

logger = structlog.stdlib.get_logger()

# (alert_id, push_token) of a token the provider reported as dead.
CleanupFn = Callable[[str, str], Awaitable[None]]

NO_TARGET_MESSAGE = "No push token configured for alert"


class AlertPipeline:
    """Wires alert source, prices, state cache, dispatcher and delivery log.

    Usage::

        pipeline = AlertPipeline(alerts, prices, cache, dispatcher, log)
        summary = await pipeline.run_once()
        ...
        await pipeline.shutdown()
    """

    def __init__(
        self,
        alert_source: AlertSource,
        price_source: PriceSource,
        state_cache: StateCache,
        dispatcher: NotificationDispatcher,
        delivery_log: DeliveryLog,
        evaluation: EvaluationConfig | None = None,
        on_cleanup_token: CleanupFn | None = None,
        clock_ms: Callable[[], int] = now_ms,
    ) -> None:
        self._alerts = alert_source
        self._prices = price_source
        self._cache = state_cache
        self._dispatcher = dispatcher
        self._log = delivery_log
        self._evaluation = evaluation or EvaluationConfig()
        self._on_cleanup_token = on_cleanup_token
        self._clock_ms = clock_ms
        self._run_lock = asyncio.Lock()
        self._runs = 0

    @property
    def state_cache(self) -> StateCache:
        return self._cache

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    @property
    def runs(self) -> int:
        return self._runs

    # ── Run ──────────────────────────────────────────────────────

    async def run_once(self, now: int | None = None) -> RunSummary:
        """Run one evaluation pass. Overlapping calls queue on a lock."""
        async with self._run_lock:
            run_id = uuid.uuid4().hex[:12]
            bind_run_context(run_id)
            self._runs += 1
            ts = now if now is not None else self._clock_ms()
            return await self._run(run_id, ts)

    async def _run(self, run_id: str, now: int) -> RunSummary:
        alerts = await self._alerts.list_active_alerts()
        if not alerts:
            logger.info("run_no_alerts")
            return RunSummary(run_id=run_id, status=RunStatus.NO_ALERTS)

        symbols = {a.symbol for a in alerts}
        try:
            prices = await self._prices.fetch_prices(symbols)
        except Exception:
            logger.exception("price_fetch_failed", symbols=len(symbols))
            prices = {}

        if not prices:
            logger.error("run_aborted_no_prices", alerts=len(alerts), symbols=len(symbols))
            return RunSummary(
                run_id=run_id,
                status=RunStatus.NO_PRICES,
                alerts=len(alerts),
                symbols=len(symbols),
            )

        states = await self._cache.load_all(a.id for a in alerts)
        result = evaluate_all(alerts, prices, states, now, self._evaluation)

        for alert_id, snapshot in result.state_updates.items():
            self._cache.put(alert_id, snapshot)

        flush = await self._cache.flush()

        due = [
            n for n in result.notifications if n.alert.channel == AlertChannel.NOTIFICATION
        ]
        statuses = await asyncio.gather(*(self._deliver(n, now) for n in due))
        counts = Counter(statuses)

        summary = RunSummary(
            run_id=run_id,
            status=RunStatus.COMPLETED,
            alerts=len(alerts),
            symbols=len(symbols),
            prices=len(prices),
            notifications=len(result.notifications),
            state_updates=len(result.state_updates),
            skipped=dict(Counter(s.reason.value for s in result.skipped)),
            delivered=counts[DeliveryStatus.SUCCESS],
            failed=counts[DeliveryStatus.FAILED],
            errors=counts[DeliveryStatus.ERROR],
            flushed=flush.written,
        )
        logger.info("run_completed", **summary.model_dump(exclude={"run_id", "status"}))
        return summary

    # ── Delivery ─────────────────────────────────────────────────

    async def _deliver(self, notification: PriceNotification, now: int) -> DeliveryStatus:
        alert = notification.alert
        title, body, data = format_notification(
            alert.id, alert.symbol, notification.price, alert.threshold, alert.direction
        )

        status = DeliveryStatus.ERROR
        error_message: str | None = None
        error_kind: str | None = None
        attempts = 0

        if not alert.target:
            error_message = NO_TARGET_MESSAGE
            logger.warning("alert_missing_target", alert_id=alert.id)
        else:
            try:
                outcome = await self._dispatcher.send(alert.target, title, body, data)
            except Exception as exc:
                logger.exception("push_send_crashed", alert_id=alert.id)
                error_message = str(exc) or type(exc).__name__
            else:
                status = DeliveryStatus.SUCCESS if outcome.success else DeliveryStatus.FAILED
                error_message = outcome.final_error
                error_kind = outcome.error_kind.value if outcome.error_kind else None
                attempts = outcome.attempts
                if outcome.should_cleanup_token:
                    await self._cleanup(alert.id, alert.target)

        attempt = DeliveryAttempt(
            id=log_id(alert.id, now),
            alert_id=alert.id,
            symbol=alert.symbol,
            threshold=alert.threshold,
            price=notification.price,
            direction=alert.direction,
            push_token=alert.target,
            status=status,
            error_message=error_message,
            error_kind=error_kind,
            attempt_count=attempts,
            sent_at=iso_timestamp(now),
        )
        try:
            await self._log.record(attempt)
        except Exception:
            logger.exception("delivery_log_write_failed", log_id=attempt.id)
        return status

    async def _cleanup(self, alert_id: str, token: str) -> None:
        if self._on_cleanup_token is None:
            logger.info("push_token_cleanup_suggested", alert_id=alert_id, token=mask_token(token))
            return
        try:
            await self._on_cleanup_token(alert_id, token)
        except Exception:
            logger.exception("push_token_cleanup_failed", alert_id=alert_id)

    # ── Lifecycle ────────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Abandon pending retries and write every queued state now."""
        self._dispatcher.shutdown()
        result = await self._cache.flush(0)
        logger.info("pipeline_shutdown", flushed=result.written, failed=result.failed)

    async def close(self) -> None:
        await self.shutdown()
        await self._dispatcher.close()
        await self._prices.close()
