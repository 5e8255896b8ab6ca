"""Exception hierarchy for push notification delivery."""

from __future__ import annotations


class PushDispatchError(Exception):
    """Base exception for push delivery errors."""


class PushTransportError(PushDispatchError):
    """The provider could not be reached (connect/read failure, timeout)."""


class PushConfigError(PushDispatchError):
    """The push provider is missing required configuration."""
