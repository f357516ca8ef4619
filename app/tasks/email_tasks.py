"""Background mailbox sync.

Enqueued on demand (there is no beat schedule). A Gmail outage or an
unreachable trade store is retried; re-running a sync is safe because every
email is imported at most once.
"""

import asyncio
import logging

from app.tasks import celery_app

logger = logging.getLogger(__name__)


def _run_async(coro):
    """Run an async coroutine from a sync Celery task."""
    loop = asyncio.new_event_loop()
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


async def _sync_mailbox_async(user_id: str, access_token: str, query: str | None = None) -> dict:
    from app.services.email.gmail import GmailClient
    from app.services.email.ingestion import EmailIngestor, IngestionChannel
    from app.services.email.store import default_trade_store

    ingestor = EmailIngestor(default_trade_store())
    async with GmailClient(access_token) as gmail:
        emails = await gmail.fetch_recent_emails(query=query)
    summary = await ingestor.ingest_batch(user_id, emails, IngestionChannel.GMAIL_SYNC)
    return summary.to_dict()


@celery_app.task(bind=True, max_retries=3, default_retry_delay=60)
def sync_gmail_mailbox(self, user_id: str, access_token: str, query: str | None = None) -> dict:
    """Pull recent broker emails for one user and import new trades."""
    from app.services.email.gmail import GmailError
    from app.services.email.store import StoreUnavailableError

    try:
        result = _run_async(_sync_mailbox_async(user_id, access_token, query))
    except (GmailError, StoreUnavailableError) as e:
        logger.error("sync_gmail_mailbox failed for %s: %s", user_id, e)
        raise self.retry(exc=e)

    logger.info("sync_gmail_mailbox: %d trades created for %s", result["count"], user_id)
    # Trade rows carry datetimes; the JSON result backend only needs the counts
    result["trade_ids"] = [trade["id"] for trade in result.pop("trades")]
    return {"status": "ok", **result}
