"""Google service-account OAuth for the FCM HTTP v1 API.

A signed RS256 JWT assertion is exchanged at Google's token endpoint for a
short-lived access token, cached until a margin before it expires.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import jwt
import structlog

from src.core.config import FcmConfig
from src.push.exceptions import PushConfigError

logger = structlog.stdlib.get_logger()

FCM_SCOPE = "https://www.googleapis.com/auth/firebase.messaging"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
ASSERTION_LIFETIME_SECS = 3600

_REQUIRED_FIELDS = ("private_key", "client_email")


def load_service_account(config: FcmConfig) -> dict[str, Any] | None:
    """Return the configured service-account key, or None if none is set.

    ``service_account_json`` wins over ``service_account_file``.

    Raises:
        PushConfigError: If the key cannot be read or lacks required fields.
    """
    raw = config.service_account_json.get_secret_value()
    source = "fcm.service_account_json"
    if not raw and config.service_account_file:
        source = config.service_account_file
        try:
            raw = Path(config.service_account_file).read_text(encoding="utf-8")
        except OSError as exc:
            raise PushConfigError(f"Cannot read service account file {source}: {exc}") from exc
    if not raw:
        return None

    try:
        account = json.loads(raw)
    except ValueError as exc:
        raise PushConfigError(f"Service account in {source} is not valid JSON") from exc
    if not isinstance(account, dict) or not all(account.get(f) for f in _REQUIRED_FIELDS):
        raise PushConfigError("Invalid service account JSON structure")
    return account


class ServiceAccountTokenProvider:
    """Async callable yielding a cached FCM access token.

    Concurrent callers share one refresh; failures surface as
    :class:`PushConfigError` so the dispatcher does not retry them.
    """

    def __init__(
        self,
        service_account: dict[str, Any],
        token_url: str = "https://oauth2.googleapis.com/token",
        scope: str = FCM_SCOPE,
        refresh_margin_secs: float = 300.0,
        timeout_secs: float = 10.0,
        http: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._account = service_account
        self._token_url = token_url
        self._scope = scope
        self._refresh_margin_secs = refresh_margin_secs
        self._timeout_secs = timeout_secs
        self._http = http
        self._owns_http = http is None
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: str | None = None
        self._expires_at = 0.0

    @classmethod
    def from_config(
        cls,
        config: FcmConfig,
        timeout_secs: float = 10.0,
        http: httpx.AsyncClient | None = None,
    ) -> ServiceAccountTokenProvider | None:
        """Build from ``push.fcm`` settings; None when no key is configured."""
        account = load_service_account(config)
        if account is None:
            return None
        return cls(
            account,
            token_url=config.token_url,
            refresh_margin_secs=config.token_refresh_margin_secs,
            timeout_secs=timeout_secs,
            http=http,
        )

    @property
    def project_id(self) -> str:
        return str(self._account.get("project_id") or "")

    @property
    def client_email(self) -> str:
        return str(self._account["client_email"])

    async def __call__(self) -> str:
        async with self._lock:
            fresh_until = self._expires_at - self._refresh_margin_secs
            if self._token is not None and self._clock() < fresh_until:
                return self._token
            return await self._refresh()

    def invalidate(self) -> None:
        """Forget the cached token; the next call fetches a new one."""
        self._token = None
        self._expires_at = 0.0

    def build_assertion(self, now: float) -> str:
        """Sign the JWT assertion presented to the token endpoint."""
        issued_at = int(now)
        claims = {
            "iss": self.client_email,
            "sub": self.client_email,
            "aud": self._token_url,
            "iat": issued_at,
            "exp": issued_at + ASSERTION_LIFETIME_SECS,
            "scope": self._scope,
        }
        headers: dict[str, str] = {}
        if self._account.get("private_key_id"):
            headers["kid"] = str(self._account["private_key_id"])
        try:
            return jwt.encode(
                claims,
                self._account["private_key"],
                algorithm="RS256",
                headers=headers or None,
            )
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            raise PushConfigError(f"Cannot sign service account assertion: {exc}") from exc

    async def _refresh(self) -> str:
        now = self._clock()
        assertion = self.build_assertion(now)
        try:
            resp = await self._get_http().post(
                self._token_url,
                data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
            )
        except httpx.HTTPError as exc:
            raise PushConfigError(f"Failed to get access token: {exc}") from exc

        if not resp.is_success:
            raise PushConfigError(
                f"Failed to get access token: {resp.status_code} {resp.text}"
            )
        try:
            body = resp.json()
        except ValueError as exc:
            raise PushConfigError("Token endpoint returned invalid JSON") from exc

        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise PushConfigError("No access_token in response")

        expires_in = float(body.get("expires_in") or ASSERTION_LIFETIME_SECS)
        self._token = str(token)
        self._expires_at = now + expires_in
        logger.info(
            "fcm_access_token_refreshed",
            client_email=self.client_email,
            expires_in=expires_in,
        )
        return self._token

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout_secs))
            self._owns_http = True
        return self._http

    async def close(self) -> None:
        if self._http is not None and self._owns_http and not self._http.is_closed:
            await self._http.aclose()
        self._http = None
