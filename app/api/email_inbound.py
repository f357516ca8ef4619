"""Inbound mail webhook: broker emails forwarded to a per-user address.

The mail relay posts each forwarded email here as JSON. The user is encoded
in the recipient alias: ``import+alice.example.com@<inbound domain>`` belongs
to ``alice@example.com``.
"""

import hashlib
import logging
import re
from email.utils import parseaddr

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.api.auth import require_webhook_secret
from app.api.deps import get_ingestor
from app.config import settings
from app.services.email.ingestion import EmailIngestor, IngestionChannel, IngestOutcome, RawEmail
from app.services.email.store import StoreUnavailableError

logger = logging.getLogger(__name__)
router = APIRouter(tags=["email"])

_FORWARDING_ALIAS = re.compile(r"import\+([^@\s<>]+)@([^\s<>]+)", re.IGNORECASE)


class InboundEmail(BaseModel):
    """Payload posted by the mail relay."""

    model_config = ConfigDict(populate_by_name=True)

    to: str | None = None
    sender: str | None = Field(None, alias="from")
    subject: str | None = None
    body: str | None = None
    message_id: str | None = Field(None, max_length=255)


def parse_forwarding_address(to: str) -> str | None:
    """User identifier from the alias, or None if the address is not ours."""
    match = _FORWARDING_ALIAS.search(to)
    if not match:
        return None
    domain = match.group(2).rstrip(".").lower()
    if settings.inbound_email_domain and domain != settings.inbound_email_domain.lower():
        return None
    return match.group(1)


def candidate_emails(identifier: str) -> list[str]:
    """Addresses the identifier may stand for, trying the rightmost dot first.

    "alice.example.com" -> ["alice.example@com", "alice@example.com"]
    """
    positions = [i for i, char in enumerate(identifier) if char == "."]
    return [f"{identifier[:i]}@{identifier[i + 1:]}".lower() for i in reversed(positions)]


def forwarded_message_id(payload: InboundEmail) -> str:
    """The relay's message id, or a content hash so a re-send maps to the same id."""
    if payload.message_id:
        return payload.message_id
    digest = hashlib.sha256(
        "\n".join([payload.to or "", payload.sender or "", payload.subject or "", payload.body or ""]).encode()
    ).hexdigest()
    return f"email-forward-{digest}"


@router.get("/api/webhooks/email-inbound")
@router.get("/api/email-inbound")
async def email_inbound_health():
    return {"status": "ok", "endpoint": "email-inbound", "method": "POST"}


@router.post("/api/webhooks/email-inbound", dependencies=[Depends(require_webhook_secret)])
@router.post("/api/email-inbound", dependencies=[Depends(require_webhook_secret)])
async def email_inbound(payload: InboundEmail, ingestor: EmailIngestor = Depends(get_ingestor)):
    """Import one forwarded broker email as a trade."""
    logger.info(
        "Inbound email to=%s from=%s subject=%r body_length=%d",
        payload.to,
        payload.sender,
        payload.subject,
        len(payload.body or ""),
    )

    if not payload.to or not payload.body:
        raise HTTPException(status_code=400, detail="Missing required fields: to, body")

    identifier = parse_forwarding_address(payload.to)
    if identifier is None:
        logger.warning("Could not extract user identifier from %r", payload.to)
        raise HTTPException(status_code=400, detail="Invalid forwarding address format")

    try:
        user_id = None
        for email in candidate_emails(identifier):
            user_id = await ingestor.store.find_user_by_email(email)
            if user_id:
                break
        if not user_id:
            logger.warning("No user for forwarding identifier %s", identifier)
            raise HTTPException(status_code=404, detail="User not found")

        sender_name, sender = parseaddr(payload.sender or "")
        raw = RawEmail(
            message_id=forwarded_message_id(payload),
            sender=sender,
            sender_name=sender_name or None,
            subject=payload.subject or "",
            body=payload.body,
        )
        result = await ingestor.ingest_one(user_id, raw, IngestionChannel.EMAIL_FORWARD)
    except StoreUnavailableError:
        raise HTTPException(status_code=503, detail="Trade store unavailable")

    if result.outcome == IngestOutcome.PARSE_FAILED:
        return {
            "success": False,
            "message": "Could not extract trade data from email",
            "suggestion": "Please check if the email format is supported",
        }
    if result.outcome == IngestOutcome.DUPLICATE:
        return {"success": False, "duplicate": True, "message": "This email has already been imported"}
    if result.outcome == IngestOutcome.FAILED:
        raise HTTPException(status_code=500, detail="Failed to save trade")

    return {
        "success": True,
        "tradeId": result.trade["id"],
        "pair": result.parsed.pair,
        "direction": result.parsed.direction,
        "broker": result.parsed.broker,
    }
