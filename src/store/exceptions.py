"""Exception hierarchy for durable key-value and SQLite storage."""

from __future__ import annotations


class StoreError(Exception):
    """Base exception for all storage errors."""


class StoreConnectionError(StoreError):
    """The backing store is not connected or could not be opened."""
