"""Domain types for price alerts and their evaluation state."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

T = TypeVar("T")


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AlertDirection(StrEnum):
    """Which side of the threshold satisfies the alert."""

    ABOVE = "above"
    BELOW = "below"


class AlertStatus(StrEnum):
    """Alert lifecycle status."""

    ACTIVE = "active"
    PAUSED = "paused"


class AlertChannel(StrEnum):
    """Delivery channel for a triggered alert."""

    NOTIFICATION = "notification"


class AlertRecord(BaseModel):
    """A user's threshold alert, as stored by the CRUD layer."""

    id: str
    symbol: str
    direction: AlertDirection
    threshold: float = Field(gt=0)
    status: AlertStatus = AlertStatus.ACTIVE
    channel: AlertChannel = AlertChannel.NOTIFICATION
    target: str = ""
    notes: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @field_validator("symbol")
    @classmethod
    def _normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class AlertStateSnapshot(BaseModel):
    """Per-alert evaluation memory carried between runs.

    Timestamps are epoch milliseconds.  Serialised with camelCase keys so
    snapshots written by earlier deployments remain readable.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    last_condition_met: bool = Field(default=False, alias="lastConditionMet")
    last_price: float | None = Field(default=None, alias="lastPrice")
    last_triggered_at: int | None = Field(default=None, alias="lastTriggeredAt")
    last_notified_price: float | None = Field(default=None, alias="lastNotifiedPrice")
    last_notified_at: int | None = Field(default=None, alias="lastNotifiedAt")

    @model_validator(mode="after")
    def _notified_pair(self) -> AlertStateSnapshot:
        if (self.last_notified_price is None) != (self.last_notified_at is None):
            raise ValueError("lastNotifiedPrice and lastNotifiedAt must be set together")
        return self

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    @classmethod
    def from_json(cls, raw: str | bytes) -> AlertStateSnapshot:
        return cls.model_validate_json(raw)


class CacheEntry(BaseModel, Generic[T]):
    """A cached value with its freshness window (epoch milliseconds)."""

    value: T
    cached_at: int
    expires_at: int

    def is_fresh(self, now: int) -> bool:
        return now < self.expires_at


class PriceNotification(BaseModel):
    """An alert whose evaluation decided a notification must be sent."""

    alert: AlertRecord
    price: float


class SkipReason(StrEnum):
    """Why an alert was not evaluated this tick."""

    INACTIVE = "inactive"
    MISSING_PRICE = "missing-price"


class SkippedAlert(BaseModel):
    """An alert left out of evaluation, with the reason."""

    alert: AlertRecord
    reason: SkipReason


class EvaluationResult(BaseModel):
    """Partitioned output of a batch evaluation."""

    notifications: list[PriceNotification] = Field(default_factory=list)
    state_updates: dict[str, AlertStateSnapshot] = Field(default_factory=dict)
    skipped: list[SkippedAlert] = Field(default_factory=list)


class DeliveryStatus(StrEnum):
    """Outcome recorded for a single delivery attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


class DeliveryAttempt(BaseModel):
    """One append-only record of an (alert, device) send attempt."""

    id: str
    alert_id: str
    symbol: str
    threshold: float
    price: float
    direction: AlertDirection
    push_token: str
    status: DeliveryStatus
    error_message: str | None = None
    error_kind: str | None = None
    attempt_count: int = 1
    sent_at: str


class RunStatus(StrEnum):
    """How a pipeline invocation ended."""

    COMPLETED = "completed"
    NO_ALERTS = "no-alerts"
    NO_PRICES = "no-prices"


class RunSummary(BaseModel):
    """Counters describing one pipeline invocation."""

    run_id: str
    status: RunStatus
    alerts: int = 0
    symbols: int = 0
    prices: int = 0
    notifications: int = 0
    state_updates: int = 0
    skipped: dict[str, int] = Field(default_factory=dict)
    delivered: int = 0
    failed: int = 0
    errors: int = 0
    flushed: int = 0
