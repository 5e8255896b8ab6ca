"""Append-only record of delivery attempts."""

from __future__ import annotations

import abc

import structlog

from src.core.logging import DELIVERY_LOGGER
from src.core.types import DeliveryAttempt
from src.store.sqlite import SqliteDatabase

# Dedicated structured logger mirroring every recorded attempt.
delivery_logger = structlog.stdlib.get_logger(DELIVERY_LOGGER)


class DeliveryLogError(Exception):
    """Base exception for delivery log errors."""


class DeliveryNotFoundError(DeliveryLogError):
    """No delivery attempt exists with the requested id."""


class DeliveryLog(abc.ABC):
    """Durable, queryable history of delivery attempts."""

    @abc.abstractmethod
    async def record(self, attempt: DeliveryAttempt) -> None:
        """Append *attempt*."""

    @abc.abstractmethod
    async def get(self, log_id: str) -> DeliveryAttempt | None:
        """Return the attempt with id *log_id*, if any."""

    @abc.abstractmethod
    async def list_recent(self, limit: int = 50) -> list[DeliveryAttempt]:
        """Most recent attempts first."""


def log_attempt(attempt: DeliveryAttempt) -> None:
    delivery_logger.info(
        "delivery_attempt",
        log_id=attempt.id,
        alert_id=attempt.alert_id,
        symbol=attempt.symbol,
        status=attempt.status.value,
        error_kind=attempt.error_kind,
        error=attempt.error_message,
        attempts=attempt.attempt_count,
    )


class InMemoryDeliveryLog(DeliveryLog):
    """Process-local log (tests, dry runs)."""

    def __init__(self) -> None:
        self.attempts: list[DeliveryAttempt] = []

    async def record(self, attempt: DeliveryAttempt) -> None:
        self.attempts.append(attempt)
        log_attempt(attempt)

    async def get(self, log_id: str) -> DeliveryAttempt | None:
        for attempt in self.attempts:
            if attempt.id == log_id:
                return attempt
        return None

    async def list_recent(self, limit: int = 50) -> list[DeliveryAttempt]:
        return list(reversed(self.attempts))[:limit]


_COLUMNS = (
    "id, alert_id, symbol, threshold, price, direction, push_token, status, "
    "error_message, error_kind, attempt_count, sent_at"
)


class SqliteDeliveryLog(DeliveryLog):
    """Delivery attempts stored in the ``notifications_log`` table."""

    def __init__(self, db: SqliteDatabase) -> None:
        self._db = db

    async def record(self, attempt: DeliveryAttempt) -> None:
        await self._db.execute(
            f"INSERT INTO notifications_log ({_COLUMNS}) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                attempt.id,
                attempt.alert_id,
                attempt.symbol,
                attempt.threshold,
                attempt.price,
                attempt.direction.value,
                attempt.push_token,
                attempt.status.value,
                attempt.error_message,
                attempt.error_kind,
                attempt.attempt_count,
                attempt.sent_at,
            ),
        )
        log_attempt(attempt)

    async def get(self, log_id: str) -> DeliveryAttempt | None:
        row = await self._db.fetchone(
            f"SELECT {_COLUMNS} FROM notifications_log WHERE id = ?", (log_id,)
        )
        return DeliveryAttempt(**dict(row)) if row is not None else None

    async def list_recent(self, limit: int = 50) -> list[DeliveryAttempt]:
        rows = await self._db.fetchall(
            f"SELECT {_COLUMNS} FROM notifications_log ORDER BY sent_at DESC LIMIT ?",
            (limit,),
        )
        return [DeliveryAttempt(**dict(r)) for r in rows]
