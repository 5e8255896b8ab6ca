"""Scheduled alert pipeline, delivery log and manual replay."""

from src.pipeline.alert_source import AlertSource, SqliteAlertSource, StaticAlertSource
from src.pipeline.delivery_log import (
    DeliveryLog,
    DeliveryLogError,
    DeliveryNotFoundError,
    InMemoryDeliveryLog,
    SqliteDeliveryLog,
)
from src.pipeline.factory import create_alert_pipeline, create_push_provider
from src.pipeline.formatters import format_body, format_data, format_notification, format_title
from src.pipeline.replay import ReplayResult, replay_delivery
from src.pipeline.runner import AlertPipeline

__all__ = [
    "AlertPipeline",
    "AlertSource",
    "DeliveryLog",
    "DeliveryLogError",
    "DeliveryNotFoundError",
    "InMemoryDeliveryLog",
    "ReplayResult",
    "SqliteAlertSource",
    "SqliteDeliveryLog",
    "StaticAlertSource",
    "create_alert_pipeline",
    "create_push_provider",
    "format_body",
    "format_data",
    "format_notification",
    "format_title",
    "replay_delivery",
]
