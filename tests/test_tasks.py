"""Tests for the background mailbox sync task."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services.email.gmail import GmailError
from app.services.email.ingestion import RawEmail
from app.services.email.store import MemoryTradeStore, default_trade_store
from app.tasks import celery_app
from app.tasks.email_tasks import sync_gmail_mailbox

EMAIL = RawEmail("g1", "broker@oanda.com", "Trade confirmation", "BUY USDJPY 0.10 lot @150.20")


def fake_gmail(emails=None, error=None):
    gmail = MagicMock()
    gmail.__aenter__ = AsyncMock(return_value=gmail)
    gmail.__aexit__ = AsyncMock(return_value=None)
    gmail.fetch_recent_emails = AsyncMock(return_value=emails or [], side_effect=error)
    return MagicMock(return_value=gmail)


class TestSyncGmailMailbox:
    def test_no_beat_schedule(self):
        assert not celery_app.conf.beat_schedule

    def test_imports_and_returns_counts(self):
        store = MemoryTradeStore()
        with (
            patch("app.services.email.gmail.GmailClient", fake_gmail([EMAIL])),
            patch("app.services.email.store.default_trade_store", return_value=store),
        ):
            result = sync_gmail_mailbox("user-1", "token")

        assert result["status"] == "ok"
        assert result["count"] == 1
        assert result["trade_ids"] == [1]
        assert "trades" not in result

    def test_gmail_error_is_retried(self):
        with (
            patch("app.services.email.gmail.GmailClient", fake_gmail(error=GmailError("quota"))),
            patch("app.services.email.store.default_trade_store", return_value=MemoryTradeStore()),
        ):
            # Called directly (not through a worker) retry re-raises the original error
            with pytest.raises(GmailError):
                sync_gmail_mailbox("user-1", "token")

    def test_memory_backend_dedupes_across_runs(self):
        default_trade_store.cache_clear()
        try:
            with (
                patch("app.services.email.gmail.GmailClient", fake_gmail([EMAIL])),
                patch("app.services.email.store.build_trade_store", side_effect=lambda backend: MemoryTradeStore()),
            ):
                first = sync_gmail_mailbox("user-1", "token")
                second = sync_gmail_mailbox("user-1", "token")
        finally:
            default_trade_store.cache_clear()

        assert first["count"] == 1
        assert second["count"] == 0
        assert second["duplicates"] == 1
