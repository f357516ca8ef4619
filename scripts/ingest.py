"""CLI for broker email ingestion.

Usage:
    python scripts/ingest.py --parse email.txt --subject "約定通知" --sender info@click-sec.com
    python scripts/ingest.py --sync USER_ID --token ACCESS_TOKEN           # Import now
    python scripts/ingest.py --sync USER_ID --token ACCESS_TOKEN --queue   # Enqueue on Celery
    python scripts/ingest.py --init-db                                     # Create tables (local only)
"""

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger(__name__)


def do_parse(path: str, subject: str, sender: str) -> int:
    """Parse one saved email body and print the extracted trade."""
    from app.services.email.parser import parse_trade_email

    body = Path(path).read_text(encoding="utf-8")
    trade = parse_trade_email(subject, body, message_id=f"file-{Path(path).name}", sender=sender)
    if trade is None:
        print("No trade found (needs a currency pair and an entry or exit price)")
        return 1

    print(json.dumps(dataclasses.asdict(trade), ensure_ascii=False, indent=2))
    return 0


async def do_sync(user_id: str, token: str) -> None:
    """Run one mailbox sync in-process."""
    from app.tasks.email_tasks import _sync_mailbox_async

    logger.info("Syncing Gmail for user %s", user_id)
    result = await _sync_mailbox_async(user_id, token)

    print("\n=== Sync Results ===")
    print(f"  created:      {result['count']}")
    print(f"  duplicates:   {result['duplicates']}")
    print(f"  unparsed:     {result['parse_failed']}")
    print(f"  failed:       {result['failed']}")
    print("====================\n")


def main() -> None:
    parser = argparse.ArgumentParser(description="FX journal email ingestion")
    parser.add_argument("--parse", type=str, help="Parse an email body saved to FILE")
    parser.add_argument("--subject", type=str, default="", help="Subject line for --parse")
    parser.add_argument("--sender", type=str, default="", help="Sender address for --parse")
    parser.add_argument("--sync", type=str, metavar="USER_ID", help="Import trades from Gmail for a user")
    parser.add_argument("--token", type=str, help="Gmail OAuth access token for --sync")
    parser.add_argument("--queue", action="store_true", help="Enqueue the sync on Celery instead of running it")
    parser.add_argument("--init-db", action="store_true", help="Create missing tables without Alembic")
    args = parser.parse_args()

    if args.init_db:
        from app.database import create_tables

        asyncio.run(create_tables())
        print("Tables created")
    elif args.parse:
        sys.exit(do_parse(args.parse, args.subject, args.sender))
    elif args.sync:
        if not args.token:
            parser.error("--sync requires --token")
        if args.queue:
            from app.tasks.email_tasks import sync_gmail_mailbox

            task = sync_gmail_mailbox.delay(args.sync, args.token)
            print(f"Queued mailbox sync: {task.id}")
        else:
            asyncio.run(do_sync(args.sync, args.token))
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
