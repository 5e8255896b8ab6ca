"""Structured logging setup using structlog.

Besides the root stream handler, delivery attempts go to the dedicated
``delivery_log`` logger, which can additionally be written to a JSON-lines
file (``logging.delivery_log_path``) for auditing sends.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from src.core.config import get_settings

DELIVERY_LOGGER = "delivery_log"

# Third-party loggers that log every request at INFO.
_QUIET_LOGGERS = ("httpx", "httpcore")


def _formatter(renderer: structlog.types.Processor) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    delivery_log_path: str | None = None,
) -> None:
    """Configure structlog with JSON or console renderer.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer format override ("json" or "console"). Uses config if None.
        delivery_log_path: JSON-lines file for delivery attempts. Uses config
            if None; no file is written when neither is set.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)
    log_format = fmt or settings.logging.format
    audit_path = delivery_log_path or settings.logging.delivery_log_path

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _configure_delivery_log(audit_path)


def _configure_delivery_log(path: str | None) -> None:
    delivery = logging.getLogger(DELIVERY_LOGGER)
    for old in list(delivery.handlers):
        delivery.removeHandler(old)
        old.close()
    if not path:
        return

    Path(path).parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer()))
    delivery.addHandler(file_handler)
    # Delivery lines always reach the audit file, whatever the root level.
    delivery.setLevel(logging.INFO)


def bind_run_context(run_id: str) -> None:
    """Attach *run_id* to every log line emitted by the current task."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(run_id=run_id)
