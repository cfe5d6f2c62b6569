from __future__ import annotations

import argparse
import asyncio
import sys

from execintel.core.config import get_settings
from execintel.core.logging import configure_logging
from execintel.persistence.db import SessionLocal
from execintel.services.delivery import LoggingDispatcher, deliver_due_digests


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Deliver every digest whose schedule slot is due")
    parser.add_argument("--limit", type=int, default=None, help="Maximum digests to deliver in this run")
    return parser


async def _run(args: argparse.Namespace) -> int:
    configure_logging()
    limit = args.limit or get_settings().delivery_batch_size
    async with SessionLocal() as session:
        logs = await deliver_due_digests(session, dispatcher=LoggingDispatcher(), limit=limit)
    print(f"Delivered {len(logs)} digest(s)")
    for log in logs:
        print(f"  {log.digest_id}: {log.status} ({log.successful_deliveries}/{log.recipients_count})")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # noqa: BLE001 - surface sweep failures to cron
        print(f"deliver_due_digests failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
