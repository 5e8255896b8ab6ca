"""Read access to the alerts owned by the CRUD layer."""

from __future__ import annotations

import abc

import structlog
from pydantic import ValidationError

from src.core.types import AlertRecord
from src.store.sqlite import SqliteDatabase

logger = structlog.stdlib.get_logger()


class AlertSource(abc.ABC):
    """Supplies the alerts to evaluate on each run."""

    @abc.abstractmethod
    async def list_active_alerts(self) -> list[AlertRecord]:
        """Return every alert whose status is ``active``."""


class StaticAlertSource(AlertSource):
    """Fixed in-memory alert list (tests, dry runs)."""

    def __init__(self, alerts: list[AlertRecord] | None = None) -> None:
        self.alerts: list[AlertRecord] = list(alerts or [])

    async def list_active_alerts(self) -> list[AlertRecord]:
        return [a for a in self.alerts if a.status == "active"]


class SqliteAlertSource(AlertSource):
    """Reads active alerts from the ``alerts`` table.

    Rows that fail validation are logged and left out rather than
    failing the whole run.
    """

    def __init__(self, db: SqliteDatabase) -> None:
        self._db = db

    async def list_active_alerts(self) -> list[AlertRecord]:
        rows = await self._db.fetchall(
            "SELECT id, symbol, direction, threshold, status, channel, target, "
            "notes, created_at, updated_at FROM alerts WHERE status = 'active' "
            "ORDER BY created_at, id"
        )
        alerts: list[AlertRecord] = []
        for row in rows:
            try:
                alerts.append(AlertRecord(**dict(row)))
            except ValidationError as exc:
                logger.warning(
                    "alert_row_invalid",
                    alert_id=row["id"],
                    errors=exc.error_count(),
                )
        return alerts
