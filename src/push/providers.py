"""Push provider adapters — Expo and FCM HTTP v1.

Each adapter makes exactly one HTTP call per ``send_push`` and normalises
the provider's response into a :class:`ProviderResponse`.  Provider error
codes are rewritten into the wording :func:`src.push.classify.classify`
understands, so the dispatcher never sees provider-specific shapes.
"""

from __future__ import annotations

import abc
import json
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
import structlog

from src.core.config import ExpoConfig, FcmConfig
from src.push.exceptions import PushConfigError, PushTransportError
from src.push.oauth import ServiceAccountTokenProvider
from src.push.types import ProviderResponse, PushMessage

logger = structlog.stdlib.get_logger()

AccessTokenProvider = Callable[[], Awaitable[str]]

EXPO_TOKEN_PREFIX = "ExponentPushToken["

# Expo ticket/receipt ``details.error`` codes → classifier wording.
_EXPO_ERROR_PHRASES: dict[str, str] = {
    "DeviceNotRegistered": "DeviceNotRegistered",
    "MessageTooBig": "Message too big",
    "MessageRateExceeded": "Rate limit exceeded",
    "InvalidCredentials": "Push credentials rejected",
}

# FCM ``errorCode`` / gRPC ``status`` values → classifier wording.
_FCM_ERROR_PHRASES: dict[str, str] = {
    "UNREGISTERED": "Device not registered",
    "NOT_FOUND": "Device not registered",
    "INVALID_ARGUMENT": "Invalid token",
    "QUOTA_EXCEEDED": "Rate limit exceeded",
    "RESOURCE_EXHAUSTED": "Rate limit exceeded",
    "UNAVAILABLE": "Service unavailable",
    "INTERNAL": "Service unavailable",
    "DEADLINE_EXCEEDED": "Request timeout",
}


class PushProvider(abc.ABC):
    """Base class for push notification providers."""

    name: str = "push"

    def __init__(
        self,
        timeout_secs: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        self._timeout_secs = timeout_secs
        self._http = http
        self._owns_http = http is None

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_secs))
            self._owns_http = True
        return self._http

    @abc.abstractmethod
    def validate_token(self, token: str) -> bool:
        """Return True if *token* is well-formed for this provider."""

    @abc.abstractmethod
    async def send_push(self, message: PushMessage) -> ProviderResponse:
        """Deliver one message.  Raises PushTransportError on network failure."""

    async def _post(
        self,
        url: str,
        payload: dict[str, Any],
        headers: dict[str, str],
    ) -> httpx.Response:
        try:
            return await self._get_http().post(url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise PushTransportError(f"{self.name} request timeout: {exc}") from exc
        except httpx.HTTPError as exc:
            raise PushTransportError(f"{self.name} network error: {exc}") from exc

    async def close(self) -> None:
        if self._http is not None and self._owns_http and not self._http.is_closed:
            await self._http.aclose()
        self._http = None


class ExpoPushProvider(PushProvider):
    """Delivers via Expo's push service (one ticket per message)."""

    name = "expo"

    def __init__(
        self,
        config: ExpoConfig | None = None,
        timeout_secs: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(timeout_secs=timeout_secs, http=http)
        self._config = config or ExpoConfig()

    def validate_token(self, token: str) -> bool:
        return bool(token) and token.startswith(EXPO_TOKEN_PREFIX) and token.endswith("]")

    async def send_push(self, message: PushMessage) -> ProviderResponse:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        access_token = self._config.access_token.get_secret_value()
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        payload = {
            "to": message.token,
            "title": message.title,
            "body": message.body,
            "data": message.data,
            "sound": "default",
            "priority": "high",
        }

        resp = await self._post(self._config.url, payload, headers)
        if not resp.is_success:
            return ProviderResponse(
                ok=False,
                error_message=f"HTTP {resp.status_code}: {resp.reason_phrase}",
                http_status=resp.status_code,
            )

        try:
            body = resp.json()
        except ValueError:
            return ProviderResponse(
                ok=False,
                error_message="Expo returned invalid JSON",
                http_status=resp.status_code,
            )

        tickets = body.get("data") if isinstance(body, dict) else None
        if isinstance(tickets, dict):
            ticket: Any = tickets
        elif isinstance(tickets, list) and tickets:
            ticket = tickets[0]
        else:
            return ProviderResponse(
                ok=False,
                error_message="No ticket returned from Expo",
                http_status=resp.status_code,
            )

        if ticket.get("status") == "error":
            return ProviderResponse(
                ok=False,
                error_message=_expo_error_message(ticket),
                http_status=resp.status_code,
            )
        return ProviderResponse(ok=True, id=ticket.get("id"), http_status=resp.status_code)


def _expo_error_message(ticket: dict[str, Any]) -> str:
    message = str(ticket.get("message") or "Unknown error from Expo")
    details = ticket.get("details")
    code = details.get("error") if isinstance(details, dict) else None
    if code:
        phrase = _EXPO_ERROR_PHRASES.get(str(code), str(code))
        return f"{phrase}: {message}"
    return message


class FcmPushProvider(PushProvider):
    """Delivers via the Firebase Cloud Messaging HTTP v1 API.

    The OAuth access token comes from *access_token_provider* when given
    (normally a :class:`ServiceAccountTokenProvider`), otherwise from the
    static ``fcm.access_token`` setting.
    """

    name = "fcm"

    def __init__(
        self,
        config: FcmConfig,
        access_token_provider: AccessTokenProvider | None = None,
        timeout_secs: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> None:
        if not config.project_id:
            raise PushConfigError("fcm.project_id is required")
        super().__init__(timeout_secs=timeout_secs, http=http)
        self._config = config
        self._access_token_provider = access_token_provider

    @property
    def send_url(self) -> str:
        return f"{self._config.base_url}/{self._config.project_id}/messages:send"

    def validate_token(self, token: str) -> bool:
        # Legacy Expo tokens cannot be delivered through FCM.
        return (
            bool(token)
            and len(token) >= 10
            and not token.startswith(EXPO_TOKEN_PREFIX)
        )

    async def _access_token(self) -> str:
        if self._access_token_provider is not None:
            return await self._access_token_provider()
        token = self._config.access_token.get_secret_value()
        if not token:
            raise PushConfigError("No FCM access token configured")
        return token

    async def send_push(self, message: PushMessage) -> ProviderResponse:
        access_token = await self._access_token()
        payload = {
            "message": {
                "token": message.token,
                "notification": {"title": message.title, "body": message.body},
                "data": {k: _stringify(v) for k, v in message.data.items()},
                "android": {
                    "priority": "high",
                    "notification": {"sound": "default", "channel_id": "default"},
                },
                "apns": {
                    "headers": {"apns-priority": "10"},
                    "payload": {"aps": {"sound": "default"}},
                },
            },
        }
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
        }

        resp = await self._post(self.send_url, payload, headers)
        if resp.is_success:
            try:
                name = resp.json().get("name")
            except (ValueError, AttributeError):
                name = None
            return ProviderResponse(ok=True, id=name, http_status=resp.status_code)

        if resp.status_code == 401 and isinstance(
            self._access_token_provider, ServiceAccountTokenProvider
        ):
            self._access_token_provider.invalidate()

        return ProviderResponse(
            ok=False,
            error_message=_fcm_error_message(resp),
            http_status=resp.status_code,
        )

    async def close(self) -> None:
        await super().close()
        if isinstance(self._access_token_provider, ServiceAccountTokenProvider):
            await self._access_token_provider.close()


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _fcm_error_message(resp: httpx.Response) -> str:
    try:
        error = resp.json().get("error") or {}
    except (ValueError, AttributeError):
        error = {}

    message = str(error.get("message") or resp.reason_phrase or "FCM error")
    codes: list[str] = []
    for detail in error.get("details") or []:
        if isinstance(detail, dict) and detail.get("errorCode"):
            codes.append(str(detail["errorCode"]))
    if error.get("status"):
        codes.append(str(error["status"]))

    if "too big" in message.lower():
        return f"Message too big: {message}"
    for code in codes:
        phrase = _FCM_ERROR_PHRASES.get(code)
        if phrase:
            return f"{phrase}: {message}"
    return f"HTTP {resp.status_code}: {message}"
