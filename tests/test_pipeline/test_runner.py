"""Tests for AlertPipeline.run_once — end-to-end over in-memory components."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

from src.alerts.state_cache import StateCache, state_key
from src.core.config import StateCacheConfig
from src.core.types import (
    AlertDirection,
    AlertRecord,
    AlertStateSnapshot,
    AlertStatus,
    DeliveryStatus,
    RunStatus,
)
from src.pipeline.alert_source import StaticAlertSource
from src.pipeline.delivery_log import InMemoryDeliveryLog
from src.pipeline.runner import NO_TARGET_MESSAGE, AlertPipeline
from src.prices.static import StaticPriceSource
from src.push.dispatcher import NotificationDispatcher
from src.push.providers import PushProvider
from src.push.types import ProviderResponse, PushMessage
from src.store.base import MemoryKeyValueStore

TOKEN = "ExponentPushToken[device-1]"


# ── Helpers ─────────────────────────────────────────────────────


class FakeProvider(PushProvider):
    name = "fake"

    def __init__(self, responses: dict[str, ProviderResponse] | None = None) -> None:
        super().__init__()
        self.responses = responses or {}
        self.sent: list[PushMessage] = []

    def validate_token(self, token: str) -> bool:
        return token.startswith("ExponentPushToken[")

    async def send_push(self, message: PushMessage) -> ProviderResponse:
        self.sent.append(message)
        return self.responses.get(message.token, ProviderResponse(ok=True, id="tkt"))


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def _no_sleep(secs: float) -> None:
    return None


def _alert(
    alert_id: str = "a1",
    symbol: str = "AAPL",
    direction: AlertDirection = AlertDirection.ABOVE,
    threshold: float = 200.0,
    target: str = TOKEN,
) -> AlertRecord:
    return AlertRecord(
        id=alert_id, symbol=symbol, direction=direction, threshold=threshold, target=target
    )


class Harness:
    def __init__(
        self,
        alerts: list[AlertRecord],
        prices: dict[str, float],
        provider: FakeProvider | None = None,
        on_cleanup_token: AsyncMock | None = None,
    ) -> None:
        self.clock = FakeClock()
        self.store = MemoryKeyValueStore()
        self.cache = StateCache(
            self.store, StateCacheConfig(kv_write_interval_secs=3600), clock=self.clock
        )
        self.provider = provider or FakeProvider()
        self.dispatcher = NotificationDispatcher(self.provider, sleep=_no_sleep)
        self.log = InMemoryDeliveryLog()
        self.alerts = StaticAlertSource(alerts)
        self.prices = StaticPriceSource(prices)
        self.pipeline = AlertPipeline(
            alert_source=self.alerts,
            price_source=self.prices,
            state_cache=self.cache,
            dispatcher=self.dispatcher,
            delivery_log=self.log,
            on_cleanup_token=on_cleanup_token,
        )


# ── Early exits ─────────────────────────────────────────────────


class TestEarlyExit:
    async def test_no_alerts(self) -> None:
        h = Harness([], {"AAPL": 205.0})
        summary = await h.pipeline.run_once(now=1)
        assert summary.status == RunStatus.NO_ALERTS
        assert h.provider.sent == []

    async def test_paused_alerts_count_as_none(self) -> None:
        paused = _alert().model_copy(update={"status": AlertStatus.PAUSED})
        h = Harness([paused], {"AAPL": 205.0})
        summary = await h.pipeline.run_once(now=1)
        assert summary.status == RunStatus.NO_ALERTS

    async def test_empty_prices_abort_without_state_change(self) -> None:
        h = Harness([_alert()], {})
        summary = await h.pipeline.run_once(now=1)
        assert summary.status == RunStatus.NO_PRICES
        assert summary.alerts == 1
        assert h.cache.cached_count == 0
        assert h.cache.pending_count == 0
        assert h.store.keys() == []
        assert h.log.attempts == []

    async def test_price_source_exception_aborts(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        h.prices.fetch_prices = AsyncMock(side_effect=ConnectionError("down"))  # type: ignore[method-assign]
        summary = await h.pipeline.run_once(now=1)
        assert summary.status == RunStatus.NO_PRICES
        assert h.cache.pending_count == 0


# ── Evaluation & delivery ───────────────────────────────────────


class TestRun:
    async def test_aapl_scenario(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})

        s1 = await h.pipeline.run_once(now=1)
        assert s1.status == RunStatus.COMPLETED
        assert s1.notifications == 1
        assert s1.delivered == 1
        assert h.provider.sent[0].title == "AAPL Alert"
        assert h.provider.sent[0].body == (
            "AAPL is now $205.00 (above your target of $200.00)"
        )
        assert h.provider.sent[0].data["alertId"] == "a1"

        h.prices.update({"AAPL": 210.0})
        s2 = await h.pipeline.run_once(now=2)
        assert s2.notifications == 0
        assert s2.state_updates == 1

        h.prices.update({"AAPL": 215.0})
        s3 = await h.pipeline.run_once(now=900_003)
        assert s3.notifications == 1
        assert len(h.provider.sent) == 2

        assert [a.id for a in h.log.attempts] == ["a1_1", "a1_900003"]
        assert all(a.status == DeliveryStatus.SUCCESS for a in h.log.attempts)

    async def test_first_run_flushes_then_batches(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        s1 = await h.pipeline.run_once(now=1)
        assert s1.flushed == 1
        assert await h.store.get(state_key("a1")) is not None

        h.prices.update({"AAPL": 210.0})
        h.clock.now += 60
        s2 = await h.pipeline.run_once(now=60_001)
        assert s2.flushed == 0
        assert h.cache.pending_count == 1

        stored = AlertStateSnapshot.from_json(await h.store.get(state_key("a1")) or "")
        assert stored.last_price == 205.0

    async def test_state_flushed_without_notifications(self) -> None:
        h = Harness([_alert(threshold=300.0)], {"AAPL": 205.0})
        summary = await h.pipeline.run_once(now=1)
        assert summary.notifications == 0
        assert summary.flushed == 1

    async def test_missing_price_counted_as_skipped(self) -> None:
        h = Harness([_alert(), _alert("a2", "MSFT")], {"AAPL": 205.0})
        summary = await h.pipeline.run_once(now=1)
        assert summary.skipped == {"missing-price": 1}
        assert summary.symbols == 2
        assert summary.prices == 1

    async def test_failed_delivery_recorded(self) -> None:
        provider = FakeProvider(
            {TOKEN: ProviderResponse(ok=False, error_message="Service unavailable")}
        )
        h = Harness([_alert()], {"AAPL": 205.0}, provider=provider)
        summary = await h.pipeline.run_once(now=1)

        assert summary.failed == 1
        attempt = h.log.attempts[0]
        assert attempt.status == DeliveryStatus.FAILED
        assert attempt.attempt_count == 3
        assert attempt.error_kind == "NetworkError"
        assert attempt.error_message == "Service unavailable"

    async def test_missing_target_recorded_as_error(self) -> None:
        h = Harness([_alert(target="")], {"AAPL": 205.0})
        summary = await h.pipeline.run_once(now=1)
        assert summary.errors == 1
        attempt = h.log.attempts[0]
        assert attempt.status == DeliveryStatus.ERROR
        assert attempt.error_message == NO_TARGET_MESSAGE
        assert h.provider.sent == []

    async def test_dispatcher_crash_recorded_as_error(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        h.dispatcher.send = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        summary = await h.pipeline.run_once(now=1)
        assert summary.errors == 1
        assert h.log.attempts[0].error_message == "boom"

    async def test_delivery_log_failure_does_not_fail_run(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        h.log.record = AsyncMock(side_effect=ConnectionError("db locked"))  # type: ignore[method-assign]
        summary = await h.pipeline.run_once(now=1)
        assert summary.status == RunStatus.COMPLETED
        assert summary.delivered == 1

    async def test_cleanup_callback_on_dead_token(self) -> None:
        provider = FakeProvider(
            {TOKEN: ProviderResponse(ok=False, error_message="DeviceNotRegistered")}
        )
        cleanup = AsyncMock()
        h = Harness([_alert()], {"AAPL": 205.0}, provider=provider, on_cleanup_token=cleanup)
        await h.pipeline.run_once(now=1)
        cleanup.assert_awaited_once_with("a1", TOKEN)
        assert len(provider.sent) == 1

    async def test_cleanup_callback_failure_is_logged(self) -> None:
        provider = FakeProvider(
            {TOKEN: ProviderResponse(ok=False, error_message="DeviceNotRegistered")}
        )
        cleanup = AsyncMock(side_effect=RuntimeError("crud down"))
        h = Harness([_alert()], {"AAPL": 205.0}, provider=provider, on_cleanup_token=cleanup)
        summary = await h.pipeline.run_once(now=1)
        assert summary.failed == 1


# ── Concurrency & lifecycle ─────────────────────────────────────


class TestLifecycle:
    async def test_overlapping_runs_are_serialized(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        s1, s2 = await asyncio.gather(
            h.pipeline.run_once(now=1), h.pipeline.run_once(now=2)
        )
        assert s1.notifications + s2.notifications == 1
        assert h.pipeline.runs == 2

    async def test_shutdown_force_flushes(self) -> None:
        h = Harness([_alert()], {"AAPL": 205.0})
        await h.pipeline.run_once(now=1)
        h.prices.update({"AAPL": 210.0})
        await h.pipeline.run_once(now=2)
        assert h.cache.pending_count == 1

        await h.pipeline.shutdown()

        assert h.cache.pending_count == 0
        assert h.dispatcher.shutting_down
        stored = AlertStateSnapshot.from_json(await h.store.get(state_key("a1")) or "")
        assert stored.last_price == 210.0
