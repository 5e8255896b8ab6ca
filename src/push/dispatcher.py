"""Push dispatcher — bounded retries with fixed backoff and error classification.

Per send, the dispatcher runs an explicit attempt loop:

- malformed tokens fail immediately as permanent (no provider call);
- every failure is classified; permanent failures stop at once;
- a :class:`PushConfigError` (missing or rejected credentials) stops at
  once as ``Unauthenticated`` without token cleanup;
- transient failures are retried until ``max_retries`` attempts were made,
  waiting ``retry_delays_ms[attempt - 1]`` between attempts.

The returned :class:`DispatchOutcome` carries a human-readable trail of
every step so callers (scheduled runs, manual replays) can show why a
send failed without re-running it.  Persisting the outcome is the
caller's job.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timezone
from typing import Any

import structlog

from src.core.config import PushConfig
from src.push.classify import classify
from src.push.exceptions import PushConfigError
from src.push.providers import PushProvider
from src.push.types import DispatchOutcome, PushError, PushErrorKind, PushMessage

logger = structlog.stdlib.get_logger()

SleepFn = Callable[[float], Awaitable[None]]

INVALID_TOKEN_MESSAGE = "Invalid push token format"


def mask_token(token: str | None, keep: int = 30) -> str:
    """Shorten a push token for logs."""
    if not token:
        return "<empty>"
    return token if len(token) <= keep else f"{token[:keep]}..."


class _Trail:
    """Timestamped diagnostic lines returned to the caller."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def add(self, text: str) -> None:
        stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
        self.lines.append(f"[{stamp}] {text}")

    def detail(self, text: str) -> None:
        self.lines.append(f"  {text}")


class NotificationDispatcher:
    """Delivers one message to one device token through a :class:`PushProvider`.

    A token is only ever attempted serially; sends to different tokens
    run in parallel up to ``max_concurrent_sends``.  Backoff waits end
    early once :meth:`shutdown` is called.
    """

    def __init__(
        self,
        provider: PushProvider,
        max_retries: int = 3,
        retry_delays_ms: Sequence[int] = (200, 500, 1000),
        max_concurrent_sends: int = 20,
        sleep: SleepFn | None = None,
    ) -> None:
        self._provider = provider
        self._max_retries = max(1, max_retries)
        self._retry_delays_ms = list(retry_delays_ms) or [0]
        self._sleep = sleep
        self._semaphore = asyncio.Semaphore(max(1, max_concurrent_sends))
        self._shutdown = asyncio.Event()
        self._token_locks: dict[str, asyncio.Lock] = {}
        self._token_users: dict[str, int] = {}

    @classmethod
    def from_config(
        cls,
        provider: PushProvider,
        config: PushConfig,
        sleep: SleepFn | None = None,
    ) -> NotificationDispatcher:
        return cls(
            provider=provider,
            max_retries=config.max_retries,
            retry_delays_ms=config.retry_delays_ms,
            max_concurrent_sends=config.max_concurrent_sends,
            sleep=sleep,
        )

    @property
    def provider(self) -> PushProvider:
        return self._provider

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def shutting_down(self) -> bool:
        return self._shutdown.is_set()

    def retry_delay_ms(self, attempt: int) -> int:
        """Delay after failed *attempt* (1-based); the last entry repeats."""
        index = min(attempt - 1, len(self._retry_delays_ms) - 1)
        return self._retry_delays_ms[index]

    # ── Public API ───────────────────────────────────────────────

    async def send(
        self,
        token: str,
        title: str,
        body: str,
        data: dict[str, Any] | None = None,
    ) -> DispatchOutcome:
        """Deliver a notification, retrying transient failures."""
        message = PushMessage(token=token, title=title, body=body, data=data or {})
        lock = self._acquire_token_lock(token)
        try:
            async with lock, self._semaphore:
                return await self._deliver(message)
        finally:
            self._release_token_lock(token)

    async def send_many(self, messages: Sequence[PushMessage]) -> list[DispatchOutcome]:
        """Deliver several messages concurrently; results keep input order."""
        return list(
            await asyncio.gather(
                *(self.send(m.token, m.title, m.body, m.data) for m in messages)
            )
        )

    def shutdown(self) -> None:
        """Stop waiting on backoff delays; in-flight sends give up."""
        self._shutdown.set()

    async def close(self) -> None:
        self.shutdown()
        await self._provider.close()

    # ── Attempt loop ─────────────────────────────────────────────

    async def _deliver(self, message: PushMessage) -> DispatchOutcome:
        trail = _Trail()
        started = time.monotonic()

        if not self._provider.validate_token(message.token):
            error = classify(INVALID_TOKEN_MESSAGE)
            trail.add(f"Validation failed: {error.message}")
            trail.detail(f"Token received: {mask_token(message.token, keep=50)}")
            trail.detail(f"Error kind: {error.kind.value}")
            trail.detail("Should cleanup token: yes")
            logger.warning(
                "push_token_invalid",
                provider=self._provider.name,
                token=mask_token(message.token),
            )
            return self._failure(trail, error, attempts=0)

        trail.add(f"Push token validated: {mask_token(message.token)}")
        trail.add(f"Prepared notification via {self._provider.name}")
        trail.detail(f"Title: {message.title}")
        trail.detail(f"Body: {message.body}")
        trail.detail(f"Data: {json.dumps(message.data, default=str)}")

        for attempt in range(1, self._max_retries + 1):
            trail.add(f"Attempt {attempt}/{self._max_retries} starting")
            attempt_started = time.monotonic()

            try:
                resp = await self._provider.send_push(message)
            except PushConfigError as exc:
                error = PushError(
                    kind=PushErrorKind.UNAUTHENTICATED,
                    message=str(exc) or type(exc).__name__,
                    is_permanent=True,
                    should_cleanup_token=False,
                )
                trail.add(f"Failed to get provider credentials: {error.message}")
                logger.error(
                    "push_credentials_failed",
                    provider=self._provider.name,
                    error=error.message,
                )
                return self._failure(trail, error, attempts=attempt)
            except Exception as exc:
                text = str(exc) or type(exc).__name__
                error = classify(text)
                trail.add(f"Exception on attempt {attempt}/{self._max_retries}")
                trail.detail(f"Error: {type(exc).__name__}: {text}")
            else:
                elapsed_ms = _ms_since(attempt_started)
                if resp.ok:
                    trail.add(f"Delivered on attempt {attempt}/{self._max_retries}")
                    trail.detail(f"Message ID: {resp.id or 'N/A'}")
                    trail.detail(f"Attempt duration: {elapsed_ms}ms")
                    trail.detail(f"Total time: {_ms_since(started)}ms")
                    logger.info(
                        "push_delivered",
                        provider=self._provider.name,
                        attempt=attempt,
                        message_id=resp.id,
                    )
                    return DispatchOutcome(
                        success=True,
                        logs=trail.lines,
                        attempts=attempt,
                        message_id=resp.id,
                    )
                error = classify(resp.error_message or "Unknown provider error", resp.http_status)
                trail.add(f"Provider rejected message in {elapsed_ms}ms")
                trail.detail(f"HTTP status: {resp.http_status if resp.http_status is not None else 'N/A'}")
                trail.detail(f"Error: {error.message}")

            trail.detail(f"Error kind: {error.kind.value}")
            trail.detail(f"Is permanent: {'yes' if error.is_permanent else 'no'}")
            trail.detail(f"Should cleanup token: {'yes' if error.should_cleanup_token else 'no'}")
            logger.warning(
                "push_attempt_failed",
                provider=self._provider.name,
                attempt=attempt,
                max_retries=self._max_retries,
                error_kind=error.kind.value,
                permanent=error.is_permanent,
                error=error.message,
            )

            if error.is_permanent:
                trail.add(f"Permanent error, not retrying after {_ms_since(started)}ms")
                trail.detail(
                    "Recommendation: "
                    + (
                        "remove the token"
                        if error.should_cleanup_token
                        else "fix the payload and resend"
                    )
                )
                return self._failure(trail, error, attempts=attempt)

            if attempt == self._max_retries:
                trail.add(
                    f"All {self._max_retries} attempts failed after {_ms_since(started)}ms"
                )
                return self._failure(trail, error, attempts=attempt)

            delay_ms = self.retry_delay_ms(attempt)
            trail.add(f"Waiting {delay_ms}ms before retry")
            if not await self._wait(delay_ms / 1000.0):
                trail.add("Shutdown requested, abandoning retries")
                return self._failure(trail, error, attempts=attempt)

        raise RuntimeError("retry loop exited without an outcome")

    async def _wait(self, secs: float) -> bool:
        """Back off for *secs*. Returns False if shutdown was requested."""
        if self._shutdown.is_set():
            return False
        if self._sleep is not None:
            await self._sleep(secs)
            return not self._shutdown.is_set()
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=secs)
        except asyncio.TimeoutError:
            return True
        return False

    @staticmethod
    def _failure(trail: _Trail, error: PushError, attempts: int) -> DispatchOutcome:
        return DispatchOutcome(
            success=False,
            logs=trail.lines,
            final_error=error.message,
            error_kind=error.kind,
            should_cleanup_token=error.should_cleanup_token,
            attempts=attempts,
        )

    # ── Per-token serialisation ──────────────────────────────────

    def _acquire_token_lock(self, token: str) -> asyncio.Lock:
        lock = self._token_locks.get(token)
        if lock is None:
            lock = asyncio.Lock()
            self._token_locks[token] = lock
            self._token_users[token] = 0
        self._token_users[token] += 1
        return lock

    def _release_token_lock(self, token: str) -> None:
        self._token_users[token] -= 1
        if self._token_users[token] == 0:
            del self._token_users[token]
            del self._token_locks[token]


def _ms_since(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
