"""SQLite-backed storage — shared connection and the durable key-value store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import structlog

from src.store.base import KeyValueStore
from src.store.exceptions import StoreConnectionError

logger = structlog.stdlib.get_logger()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS kv_store (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    expires_at INTEGER
);

CREATE TABLE IF NOT EXISTS alerts (
    id TEXT PRIMARY KEY,
    symbol TEXT NOT NULL,
    direction TEXT NOT NULL CHECK (direction IN ('above', 'below')),
    threshold REAL NOT NULL,
    status TEXT NOT NULL DEFAULT 'active' CHECK (status IN ('active', 'paused')),
    channel TEXT NOT NULL,
    target TEXT NOT NULL,
    notes TEXT,
    created_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_alerts_status ON alerts (status);

CREATE TABLE IF NOT EXISTS notifications_log (
    id TEXT PRIMARY KEY,
    alert_id TEXT NOT NULL,
    symbol TEXT NOT NULL,
    threshold REAL NOT NULL,
    price REAL NOT NULL,
    direction TEXT NOT NULL,
    push_token TEXT NOT NULL,
    status TEXT NOT NULL,
    error_message TEXT,
    error_kind TEXT,
    attempt_count INTEGER NOT NULL DEFAULT 1,
    sent_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notifications_log_alert_id ON notifications_log (alert_id);
CREATE INDEX IF NOT EXISTS idx_notifications_log_sent_at ON notifications_log (sent_at DESC);
"""


class SqliteDatabase:
    """One SQLite connection shared by the stores built on top of it.

    Statements run in a worker thread via ``asyncio.to_thread`` and are
    serialised by a lock, since a single connection is not safe for
    concurrent use.

    Usage::

        db = SqliteDatabase("data/alerts.db")
        db.connect()
        rows = await db.fetchall("SELECT * FROM alerts")
        db.close()
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._path = str(path)
        self._conn: sqlite3.Connection | None = None
        self._lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._conn is not None

    def connect(self) -> SqliteDatabase:
        if self._conn is not None:
            return self
        if self._path != ":memory:":
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if self._path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info("sqlite_connected", path=self._path)
        return self

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def _require(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreConnectionError("SQLite database not connected")
        return self._conn

    def _execute_sync(self, sql: str, params: Sequence[Any]) -> None:
        conn = self._require()
        with self._lock:
            conn.execute(sql, params)
            conn.commit()

    def _fetch_sync(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        conn = self._require()
        with self._lock:
            return conn.execute(sql, params).fetchall()

    async def execute(self, sql: str, params: Sequence[Any] = ()) -> None:
        await asyncio.to_thread(self._execute_sync, sql, params)

    async def fetchall(self, sql: str, params: Sequence[Any] = ()) -> list[sqlite3.Row]:
        return await asyncio.to_thread(self._fetch_sync, sql, params)

    async def fetchone(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Row | None:
        rows = await self.fetchall(sql, params)
        return rows[0] if rows else None


class SqliteKeyValueStore(KeyValueStore):
    """Durable key-value store in the ``kv_store`` table.

    Expired keys read as absent and are removed lazily.
    """

    def __init__(self, db: SqliteDatabase, clock: Callable[[], float] = time.time) -> None:
        self._db = db
        self._clock = clock

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    async def get(self, key: str) -> str | None:
        row = await self._db.fetchone(
            "SELECT value, expires_at FROM kv_store WHERE key = ?", (key,)
        )
        if row is None:
            return None
        expires_at = row["expires_at"]
        if expires_at is not None and self._now_ms() >= expires_at:
            await self._db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            return None
        return str(row["value"])

    async def put(self, key: str, value: str, ttl_secs: float | None = None) -> None:
        expires_at = (
            self._now_ms() + int(ttl_secs * 1000) if ttl_secs is not None else None
        )
        await self._db.execute(
            "INSERT INTO kv_store (key, value, expires_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, "
            "expires_at = excluded.expires_at",
            (key, value, expires_at),
        )

    async def delete(self, key: str) -> None:
        await self._db.execute("DELETE FROM kv_store WHERE key = ?", (key,))
