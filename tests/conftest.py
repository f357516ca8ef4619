"""Shared test fixtures."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.api.deps import get_trade_store
from app.main import app
from app.services.email.ingestion import EmailIngestor, RawEmail
from app.services.email.store import MemoryTradeStore

ALICE_ID = "user-alice"
WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture
def store() -> MemoryTradeStore:
    """Fresh in-memory store with alice@example.com registered."""
    store = MemoryTradeStore()
    store.add_profile("alice@example.com", user_id=ALICE_ID)
    return store


@pytest.fixture
def ingestor(store) -> EmailIngestor:
    return EmailIngestor(store, default_timezone="Asia/Tokyo")


@pytest.fixture
def oanda_email() -> RawEmail:
    return RawEmail(
        message_id="msg-oanda-1",
        sender="broker@oanda.com",
        subject="Order Confirmation",
        body="BUY USDJPY 0.10 lot @150.20",
    )


@pytest.fixture
def client(store):
    """API client wired to the in-memory store, webhook secret set, API key bypassed."""
    app.dependency_overrides[get_trade_store] = lambda: store
    with patch("app.api.auth.settings") as mock_settings:
        mock_settings.email_ingest_secret = WEBHOOK_SECRET
        mock_settings.api_key = ""
        mock_settings.app_env = "development"
        yield TestClient(app)
    app.dependency_overrides.clear()
