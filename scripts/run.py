#!/usr/bin/env python3
"""Alert engine entrypoint — wires all components and runs the pipeline.

Usage::

    # Run one evaluation pass and exit
    python scripts/run.py --prices prices.yaml --once

    # Run every scheduler.interval_secs until interrupted
    python scripts/run.py --config config/settings.yaml --prices prices.yaml

    # Override log level
    python scripts/run.py --prices prices.yaml --log-level DEBUG

The price file is a YAML mapping of ``SYMBOL: price``.  Deployments with a
live quote provider construct the pipeline with their own
:class:`~src.prices.base.PriceSource` via ``create_alert_pipeline``.
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import structlog

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.core.types import RunStatus
from src.pipeline.factory import create_alert_pipeline
from src.prices.static import StaticPriceSource

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    """Run the pipeline once, or on a fixed cadence until interrupted."""
    settings = load_settings(args.config)
    setup_logging(level=args.log_level)

    try:
        prices = StaticPriceSource.from_yaml(args.prices)
    except (OSError, ValueError) as exc:
        print(f"Cannot load prices from {args.prices}: {exc}", file=sys.stderr)
        return 1

    pipeline, db = create_alert_pipeline(settings, prices)
    interval = args.interval or settings.scheduler.interval_secs

    logger.info(
        "engine_starting",
        provider=settings.push.provider,
        sqlite_path=settings.storage.sqlite_path,
        once=args.once,
        interval_secs=interval,
    )

    # ── Wait for shutdown signal ─────────────────────────────────
    stop_event = asyncio.Event()

    def _signal_handler() -> None:
        logger.info("shutdown_signal_received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler)
        except NotImplementedError:
            # Windows: signal handlers not supported on ProactorEventLoop
            pass

    code = 0
    try:
        while True:
            try:
                summary = await pipeline.run_once()
            except Exception:
                logger.exception("run_failed")
                code = 1
            else:
                code = 0 if summary.status != RunStatus.NO_PRICES else 2

            if args.once or stop_event.is_set():
                break
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            break
    except KeyboardInterrupt:
        logger.info("keyboard_interrupt")

    # ── Graceful shutdown ────────────────────────────────────────
    logger.info("engine_shutting_down")
    try:
        await pipeline.close()
    finally:
        db.close()

    logger.info("engine_stopped", runs=pipeline.runs)
    return code


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Evaluate price alerts and deliver push notifications.",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to settings YAML (default: config/settings.yaml)",
    )
    parser.add_argument(
        "--prices",
        required=True,
        help="YAML file mapping symbols to their latest prices",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single evaluation pass and exit",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between runs (default: scheduler.interval_secs)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Log level override: DEBUG, INFO, WARNING, ERROR",
    )
    args = parser.parse_args()

    code = asyncio.run(run(args))
    sys.exit(code)


if __name__ == "__main__":
    main()
