"""Domain types for push notification delivery."""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class PushErrorKind(StrEnum):
    """Provider-agnostic classification of a delivery failure."""

    DEVICE_NOT_REGISTERED = "DeviceNotRegistered"
    INVALID_TOKEN = "InvalidToken"
    PAYLOAD_TOO_LARGE = "PayloadTooLarge"
    RATE_LIMITED = "RateLimited"
    NETWORK_ERROR = "NetworkError"
    UNAUTHENTICATED = "Unauthenticated"
    UNKNOWN = "Unknown"


class PushError(BaseModel):
    """Classified delivery failure, recomputed for every failed attempt."""

    kind: PushErrorKind
    message: str
    is_permanent: bool
    should_cleanup_token: bool


class PushMessage(BaseModel):
    """A single notification addressed to one device token."""

    token: str
    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)


class ProviderResponse(BaseModel):
    """Normalised result of one provider call."""

    ok: bool
    id: str | None = None
    error_message: str | None = None
    http_status: int | None = None


class DispatchOutcome(BaseModel):
    """Result of :meth:`NotificationDispatcher.send`, with its diagnostic trail."""

    success: bool
    logs: list[str] = Field(default_factory=list)
    final_error: str | None = None
    error_kind: PushErrorKind | None = None
    should_cleanup_token: bool | None = None
    attempts: int = 0
    message_id: str | None = None
