"""Convenience factory for wiring the alert pipeline from settings."""

from __future__ import annotations

import httpx

from src.alerts.state_cache import StateCache
from src.core.config import PushConfig, Settings
from src.pipeline.alert_source import SqliteAlertSource
from src.pipeline.delivery_log import SqliteDeliveryLog
from src.pipeline.runner import AlertPipeline, CleanupFn
from src.prices.base import PriceSource
from src.prices.cached import CachedPriceSource
from src.push.dispatcher import NotificationDispatcher, SleepFn
from src.push.exceptions import PushConfigError
from src.push.oauth import ServiceAccountTokenProvider
from src.push.providers import ExpoPushProvider, FcmPushProvider, PushProvider
from src.store.sqlite import SqliteDatabase, SqliteKeyValueStore


def create_push_provider(
    config: PushConfig,
    http: httpx.AsyncClient | None = None,
) -> PushProvider:
    """Build the provider named by ``push.provider`` (``expo`` or ``fcm``).

    FCM authenticates with the configured service account when one is set,
    which also supplies ``project_id`` if the setting is blank.
    """
    name = config.provider.lower()
    if name == "expo":
        return ExpoPushProvider(
            config=config.expo,
            timeout_secs=config.request_timeout_secs,
            http=http,
        )
    if name == "fcm":
        fcm = config.fcm
        token_provider = ServiceAccountTokenProvider.from_config(
            fcm, timeout_secs=config.request_timeout_secs, http=http
        )
        if token_provider is not None and not fcm.project_id:
            fcm = fcm.model_copy(update={"project_id": token_provider.project_id})
        return FcmPushProvider(
            config=fcm,
            access_token_provider=token_provider,
            timeout_secs=config.request_timeout_secs,
            http=http,
        )
    raise PushConfigError(f"Unknown push provider: {config.provider!r}")


def create_alert_pipeline(
    settings: Settings,
    price_source: PriceSource,
    db: SqliteDatabase | None = None,
    on_cleanup_token: CleanupFn | None = None,
    http: httpx.AsyncClient | None = None,
    sleep: SleepFn | None = None,
) -> tuple[AlertPipeline, SqliteDatabase]:
    """Build a pipeline backed by SQLite storage.

    Returns:
        (pipeline, database). The caller closes the database on exit.
    """
    if db is None:
        db = SqliteDatabase(settings.storage.sqlite_path)
    if not db.connected:
        db.connect()

    provider = create_push_provider(settings.push, http=http)
    dispatcher = NotificationDispatcher.from_config(provider, settings.push, sleep=sleep)

    pipeline = AlertPipeline(
        alert_source=SqliteAlertSource(db),
        price_source=CachedPriceSource(price_source, settings.prices),
        state_cache=StateCache(SqliteKeyValueStore(db), settings.state_cache),
        dispatcher=dispatcher,
        delivery_log=SqliteDeliveryLog(db),
        evaluation=settings.evaluation,
        on_cleanup_token=on_cleanup_token,
    )
    return pipeline, db
