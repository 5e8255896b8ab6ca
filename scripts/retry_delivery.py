#!/usr/bin/env python3
"""Re-send a logged notification and print the delivery trail.

Usage::

    # List the most recent delivery attempts
    python scripts/retry_delivery.py --list

    # Retry one of them
    python scripts/retry_delivery.py alert-123_1718000000000
"""

from __future__ import annotations

import argparse
import asyncio
import sys

import structlog

from src.core.config import load_settings
from src.core.logging import setup_logging
from src.pipeline.delivery_log import DeliveryNotFoundError, SqliteDeliveryLog
from src.pipeline.factory import create_push_provider
from src.pipeline.replay import replay_delivery
from src.push.dispatcher import NotificationDispatcher, mask_token
from src.store.sqlite import SqliteDatabase

logger = structlog.get_logger(__name__)


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    setup_logging(level=args.log_level, fmt="console")

    db = SqliteDatabase(settings.storage.sqlite_path).connect()
    delivery_log = SqliteDeliveryLog(db)
    try:
        if args.list or not args.log_id:
            for attempt in await delivery_log.list_recent(args.limit):
                print(
                    f"{attempt.id:<40} {attempt.status.value:<8} {attempt.symbol:<8} "
                    f"{attempt.sent_at}  {mask_token(attempt.push_token)}"
                )
            return 0

        provider = create_push_provider(settings.push)
        dispatcher = NotificationDispatcher.from_config(provider, settings.push)
        try:
            result = await replay_delivery(args.log_id, delivery_log, dispatcher)
        except DeliveryNotFoundError as exc:
            print(str(exc), file=sys.stderr)
            return 1
        finally:
            await dispatcher.close()

        print("\n".join(result.logs))
        return 0 if result.success else 2
    finally:
        db.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Retry a logged push delivery.")
    parser.add_argument("log_id", nargs="?", help="Delivery log id to retry")
    parser.add_argument("--list", action="store_true", help="List recent deliveries")
    parser.add_argument("--limit", type=int, default=20)
    parser.add_argument("--config", default=None)
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args()

    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
