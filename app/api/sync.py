"""Mailbox pull: import broker emails from the user's Gmail account."""

import logging

from fastapi import APIRouter, Depends, Header
from fastapi.responses import JSONResponse

from app.api.auth import require_api_key
from app.api.deps import get_ingestor
from app.services.email.gmail import GmailClient, GmailError
from app.services.email.ingestion import EmailIngestor, IngestionChannel
from app.services.email.store import StoreUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["email"])


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


@router.post("/api/sync-trades", dependencies=[Depends(require_api_key)])
async def sync_trades(
    authorization: str | None = Header(None),
    x_user_id: str | None = Header(None),
    ingestor: EmailIngestor = Depends(get_ingestor),
):
    """Fetch recent broker emails and import any new trades.

    Authorization carries the Gmail OAuth access token; X-User-Id names the
    journal the trades belong to.
    """
    access_token = _bearer_token(authorization)
    if not access_token:
        return JSONResponse(status_code=401, content={"error": "No access token - please reconnect Gmail"})
    if not x_user_id:
        return JSONResponse(status_code=401, content={"error": "No user session"})

    try:
        async with GmailClient(access_token) as gmail:
            emails = await gmail.fetch_recent_emails()
        summary = await ingestor.ingest_batch(x_user_id, emails, IngestionChannel.GMAIL_SYNC)
    except GmailError as e:
        logger.error("Gmail sync failed for %s: %s", x_user_id, e)
        return JSONResponse(status_code=502, content={"error": str(e)})
    except StoreUnavailableError as e:
        logger.error("Gmail sync for %s could not reach the trade store: %s", x_user_id, e)
        return JSONResponse(status_code=503, content={"error": "Trade store unavailable"})

    return {"success": True, **summary.to_dict()}
