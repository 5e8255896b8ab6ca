"""Classification of push delivery failures into permanent vs transient.

Provider adapters translate their own error vocabulary into the phrases
matched here, so this table is the single place that decides whether a
failure is worth retrying.
"""

from __future__ import annotations

from src.push.types import PushError, PushErrorKind

# Ordered: first match wins.
_RULES: list[tuple[PushErrorKind, tuple[str, ...], bool, bool]] = [
    (
        PushErrorKind.DEVICE_NOT_REGISTERED,
        ("devicenotregistered", "device not registered", "unregistered"),
        True,
        True,
    ),
    (
        PushErrorKind.INVALID_TOKEN,
        ("invalid token", "invalid push token", "invalid registration"),
        True,
        True,
    ),
    (
        PushErrorKind.PAYLOAD_TOO_LARGE,
        ("message too big", "messagetoobig", "payload too large"),
        True,
        False,
    ),
    (
        PushErrorKind.RATE_LIMITED,
        ("rate limit", "messagerateexceeded", "too many requests", "quota exceeded"),
        False,
        False,
    ),
    (
        PushErrorKind.NETWORK_ERROR,
        ("network", "timeout", "timed out", "connection", "unavailable"),
        False,
        False,
    ),
]


def classify(message: str, http_status: int | None = None) -> PushError:
    """Classify a failure from its error text and optional HTTP status."""
    text = (message or "").lower()

    for kind, needles, permanent, cleanup in _RULES:
        if kind == PushErrorKind.RATE_LIMITED and http_status == 429:
            return PushError(
                kind=kind, message=message, is_permanent=False, should_cleanup_token=False
            )
        if any(n in text for n in needles):
            return PushError(
                kind=kind,
                message=message,
                is_permanent=permanent,
                should_cleanup_token=cleanup,
            )

    if http_status == 413:
        return PushError(
            kind=PushErrorKind.PAYLOAD_TOO_LARGE,
            message=message,
            is_permanent=True,
            should_cleanup_token=False,
        )

    return PushError(
        kind=PushErrorKind.UNKNOWN,
        message=message,
        is_permanent=False,
        should_cleanup_token=False,
    )
