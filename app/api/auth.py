"""Request authentication for the journal API.

Two schemes:
- X-API-Key for read endpoints. Bypassed in development when no key is set.
- x-webhook-secret for the inbound-mail webhook. Never bypassed: with no
  secret configured every webhook call is rejected.
"""

import hmac
import logging

from fastapi import HTTPException, Security
from fastapi.security import APIKeyHeader

from app.config import settings

logger = logging.getLogger(__name__)

_api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)
_webhook_secret_header = APIKeyHeader(name="x-webhook-secret", auto_error=False)


async def require_api_key(api_key: str | None = Security(_api_key_header)) -> str:
    """Dependency that enforces API key authentication."""
    if not settings.api_key and settings.app_env == "development":
        return "dev-bypass"

    if not settings.api_key:
        logger.warning("API key not configured but app_env=%s, blocking request", settings.app_env)
        raise HTTPException(status_code=403, detail="API key not configured on server")

    if not api_key or not hmac.compare_digest(api_key, settings.api_key):
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return api_key


async def require_webhook_secret(secret: str | None = Security(_webhook_secret_header)) -> None:
    """Dependency for the mail-forwarding webhook."""
    expected = settings.email_ingest_secret
    if not expected or not secret or not hmac.compare_digest(secret, expected):
        logger.error("Inbound email rejected: webhook secret mismatch")
        raise HTTPException(status_code=401, detail="Unauthorized")
