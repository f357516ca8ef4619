"""Gmail REST client for pulling broker confirmation emails.

Uses a caller-supplied OAuth access token; refreshing it is the caller's job.
Messages are fetched one by one after a single listing call, and returned
oldest first so trades are imported in the order they happened.
"""

import base64
import binascii
import logging
from email.utils import parseaddr
from typing import Any

import httpx

from app.config import settings
from app.services.email.ingestion import RawEmail
from app.services.email.parser import strip_html

logger = logging.getLogger(__name__)

SEARCH_KEYWORDS: tuple[str, ...] = (
    # Japanese
    "約定", "取引", "決済", "注文確定", "FX",
    # English
    "order executed", "trade confirmation", "position opened", "position closed",
    # Brokers
    "GMOクリック証券", "XMTrading", "Exness", "OANDA", "DMM FX", "SBI FX",
    "IC Markets", "Pepperstone", "FXCM", "IG証券", "みんなのFX", "LION FX",
)

DEFAULT_QUERY = " OR ".join(f'"{keyword}"' for keyword in SEARCH_KEYWORDS)


class GmailError(Exception):
    """The Gmail API rejected a request or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def build_query(after: str | None = None) -> str:
    return f"({DEFAULT_QUERY}) after:{after or settings.gmail_query_after}"


def decode_base64url(data: str | None) -> str:
    """Decode a Gmail body part. Malformed data gives an empty string."""
    if not data:
        return ""
    padded = data + "=" * (-len(data) % 4)
    try:
        return base64.urlsafe_b64decode(padded).decode("utf-8", errors="replace")
    except (binascii.Error, ValueError) as e:
        logger.warning("Could not decode message body: %s", e)
        return ""


def _find_part(payload: dict[str, Any], mime_type: str) -> str:
    for part in payload.get("parts") or []:
        if part.get("mimeType") == mime_type:
            text = decode_base64url((part.get("body") or {}).get("data"))
            if text:
                return text
        nested = _find_part(part, mime_type)
        if nested:
            return nested
    return ""


def extract_body(message: dict[str, Any]) -> str:
    """Best available plain text: top-level body, text/plain, stripped text/html, snippet."""
    payload = message.get("payload") or {}

    body = decode_base64url((payload.get("body") or {}).get("data"))
    if body:
        return body

    body = _find_part(payload, "text/plain")
    if body:
        return body

    html_body = _find_part(payload, "text/html")
    if html_body:
        return strip_html(html_body)

    return message.get("snippet") or ""


def header(message: dict[str, Any], name: str) -> str:
    for item in (message.get("payload") or {}).get("headers") or []:
        if item.get("name", "").lower() == name.lower():
            return item.get("value", "")
    return ""


def to_raw_email(message: dict[str, Any]) -> RawEmail:
    display_name, address = parseaddr(header(message, "From"))
    return RawEmail(
        message_id=message["id"],
        sender=address,
        sender_name=display_name or None,
        subject=header(message, "Subject"),
        body=extract_body(message),
    )


class GmailClient:
    """Minimal Gmail API client over httpx."""

    def __init__(
        self,
        access_token: str,
        base_url: str = settings.gmail_api_base_url,
        timeout: float = settings.gmail_timeout_seconds,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {access_token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "GmailClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def list_message_ids(self, query: str, max_results: int = settings.gmail_max_results) -> list[str]:
        try:
            response = await self._client.get("/messages", params={"q": query, "maxResults": max_results})
        except httpx.HTTPError as e:
            raise GmailError(f"Gmail request failed: {e}") from e

        if response.is_error:
            logger.error("Gmail API error %d: %s", response.status_code, response.text[:500])
            raise GmailError(
                f"Failed to fetch messages: {response.status_code} {response.reason_phrase}",
                status_code=response.status_code,
            )
        return [item["id"] for item in response.json().get("messages") or []]

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        """Full message resource, or None when Gmail refuses this one message."""
        try:
            response = await self._client.get(f"/messages/{message_id}")
        except httpx.HTTPError as e:
            raise GmailError(f"Gmail request failed: {e}") from e

        if response.is_error:
            logger.warning("Skipping message %s: Gmail returned %d", message_id, response.status_code)
            return None
        return response.json()

    async def fetch_recent_emails(self, query: str | None = None, max_results: int | None = None) -> list[RawEmail]:
        """Broker-looking emails, oldest first."""
        ids = await self.list_message_ids(query or build_query(), max_results or settings.gmail_max_results)

        emails = []
        for message_id in ids:
            message = await self.get_message(message_id)
            if message is not None:
                emails.append(to_raw_email(message))

        # The listing is newest first
        emails.reverse()
        logger.info("Fetched %d of %d listed Gmail messages", len(emails), len(ids))
        return emails
