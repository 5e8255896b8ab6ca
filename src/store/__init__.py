"""Key-value and SQLite storage."""

from src.store.base import KeyValueStore, MemoryKeyValueStore
from src.store.exceptions import StoreConnectionError, StoreError
from src.store.sqlite import SqliteDatabase, SqliteKeyValueStore
from src.store.ttl_cache import TTLCache

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SqliteDatabase",
    "SqliteKeyValueStore",
    "StoreConnectionError",
    "StoreError",
    "TTLCache",
]
