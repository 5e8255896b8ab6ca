"""Push notification providers and the retrying dispatcher."""

from src.push.classify import classify
from src.push.dispatcher import NotificationDispatcher, mask_token
from src.push.exceptions import PushConfigError, PushDispatchError, PushTransportError
from src.push.oauth import ServiceAccountTokenProvider, load_service_account
from src.push.providers import ExpoPushProvider, FcmPushProvider, PushProvider
from src.push.types import (
    DispatchOutcome,
    ProviderResponse,
    PushError,
    PushErrorKind,
    PushMessage,
)

__all__ = [
    "DispatchOutcome",
    "ExpoPushProvider",
    "FcmPushProvider",
    "NotificationDispatcher",
    "ProviderResponse",
    "PushConfigError",
    "PushDispatchError",
    "PushError",
    "PushErrorKind",
    "PushMessage",
    "PushProvider",
    "PushTransportError",
    "ServiceAccountTokenProvider",
    "classify",
    "load_service_account",
    "mask_token",
]
