#!/usr/bin/env python3
"""Drain the notification outbox.

Sends every pending notification intent once. Intents left pending by a
crashed worker or a dropped background task are picked up here; failed
intents are not retried.

Usage:
    # Send up to 50 pending notifications:
    python scripts/drain_outbox.py

    # Send up to 500:
    python scripts/drain_outbox.py --limit 500

Requires:
    DATABASE_URL and JWT_SECRET_KEY environment variables (or in .env),
    SENDGRID_API_KEY for emails to actually go out.
"""

import argparse
import asyncio
import logging
import os
import sys

_project_root = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

from app.core.database import SessionLocal, engine  # noqa: E402
from app.services.notification_dispatcher import NotificationDispatcher  # noqa: E402


async def run(limit: int) -> dict:
    try:
        return await NotificationDispatcher(session_factory=SessionLocal).drain(limit=limit)
    finally:
        await engine.dispose()


def main():
    parser = argparse.ArgumentParser(description="Send pending appointment notifications")
    parser.add_argument("--limit", type=int, default=50, help="Maximum intents to send (default: 50)")
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    counts = asyncio.run(run(args.limit))
    print(f"Sent: {counts['sent']}  Failed: {counts['failed']}")
    sys.exit(1 if counts["failed"] else 0)


if __name__ == "__main__":
    main()
