"""Tests for the ingestion pipeline: dedupe, channels, batch failure handling."""

from unittest.mock import AsyncMock

import pytest

from app.services.email.dedupe import DuplicateGuard
from app.services.email.ingestion import (
    IngestionChannel,
    IngestOutcome,
    RawEmail,
    trade_fields,
)
from app.services.email.parser import parse_trade_email
from app.services.email.store import DuplicateMessageError, MemoryTradeStore, StoreUnavailableError

ALICE_ID = "user-alice"

NEWSLETTER = RawEmail(
    message_id="msg-news",
    sender="news@example.com",
    subject="Weekly outlook",
    body="The dollar was strong this week.",
)


class TestIdempotency:
    @pytest.mark.asyncio
    async def test_same_message_twice_creates_one_trade(self, ingestor, store, oanda_email):
        first = await ingestor.ingest_one(ALICE_ID, oanda_email, IngestionChannel.EMAIL_FORWARD)
        second = await ingestor.ingest_one(ALICE_ID, oanda_email, IngestionChannel.EMAIL_FORWARD)

        assert first.outcome == IngestOutcome.PERSISTED
        assert second.outcome == IngestOutcome.DUPLICATE
        assert len(await store.list_trades(ALICE_ID)) == 1

    @pytest.mark.asyncio
    async def test_same_message_for_different_users(self, ingestor, store, oanda_email):
        bob = store.add_profile("bob@example.com")
        await ingestor.ingest_one(ALICE_ID, oanda_email, IngestionChannel.GMAIL_SYNC)
        result = await ingestor.ingest_one(bob, oanda_email, IngestionChannel.GMAIL_SYNC)

        assert result.outcome == IngestOutcome.PERSISTED

    @pytest.mark.asyncio
    async def test_concurrent_insert_reported_as_duplicate(self, ingestor, store, oanda_email, monkeypatch):
        await ingestor.ingest_one(ALICE_ID, oanda_email, IngestionChannel.GMAIL_SYNC)
        # Simulate a racing invocation that passed the pre-check
        monkeypatch.setattr(store, "has_ingested", AsyncMock(return_value=False))

        result = await ingestor.ingest_one(ALICE_ID, oanda_email, IngestionChannel.GMAIL_SYNC)

        assert result.outcome == IngestOutcome.DUPLICATE
        assert len(await store.list_trades(ALICE_ID)) == 1

    @pytest.mark.asyncio
    async def test_guard_swallows_only_duplicates(self):
        store = MemoryTradeStore()
        store.save_imported_trade = AsyncMock(side_effect=DuplicateMessageError("u", "m"))
        guard = DuplicateGuard(store)

        assert await guard.persist_once("u", "m", {}, "gmail_sync") is None


class TestChannels:
    def test_forwarded_fields(self, oanda_email):
        parsed = parse_trade_email(oanda_email.subject, oanda_email.body, oanda_email.message_id, oanda_email.sender)
        fields = trade_fields(parsed, IngestionChannel.EMAIL_FORWARD)

        assert fields["pair"] == "USD/JPY"
        assert fields["pair_normalized"] == "USDJPY"
        assert fields["tags"] == ["OANDA", "Forwarded"]
        assert fields["verification_source"] == "email_forward"
        assert fields["data_source"] == "email_forward"
        assert fields["is_verified"] is True
        assert fields["lot_size_raw_unit"] == "Lot"

    def test_sync_fields(self, oanda_email):
        parsed = parse_trade_email(oanda_email.subject, oanda_email.body, oanda_email.message_id, oanda_email.sender)
        fields = trade_fields(parsed, IngestionChannel.GMAIL_SYNC)

        assert fields["tags"] == ["OANDA", "AutoImport"]
        assert fields["data_source"] == "gmail_sync"

    def test_parsed_tags_not_mutated(self, oanda_email):
        parsed = parse_trade_email(oanda_email.subject, oanda_email.body, oanda_email.message_id, oanda_email.sender)
        trade_fields(parsed, IngestionChannel.GMAIL_SYNC)
        assert parsed.tags == ["OANDA"]


class TestBatch:
    @pytest.mark.asyncio
    async def test_counts(self, ingestor, oanda_email):
        summary = await ingestor.ingest_batch(
            ALICE_ID, [oanda_email, NEWSLETTER, oanda_email], IngestionChannel.GMAIL_SYNC
        )

        assert summary.count == 1
        assert summary.parse_failed == 1
        assert summary.duplicates == 1
        assert summary.failed == 0
        data = summary.to_dict()
        assert data["count"] == 1
        assert data["trades"][0]["pair_normalized"] == "USDJPY"

    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort_batch(self, ingestor, store, oanda_email):
        second = RawEmail("msg-2", "broker@oanda.com", "Trade confirmation", "SELL EURUSD 1 lot @1.0850")
        store.save_imported_trade = AsyncMock(
            side_effect=[RuntimeError("constraint violated"), {"id": 7, "pair_normalized": "EURUSD"}]
        )

        summary = await ingestor.ingest_batch(ALICE_ID, [oanda_email, second], IngestionChannel.GMAIL_SYNC)

        assert summary.failed == 1
        assert summary.count == 1

    @pytest.mark.asyncio
    async def test_unreachable_store_fails_the_batch(self, ingestor, store, oanda_email):
        store.save_imported_trade = AsyncMock(side_effect=StoreUnavailableError("connection refused"))

        with pytest.raises(StoreUnavailableError):
            await ingestor.ingest_batch(ALICE_ID, [oanda_email, NEWSLETTER], IngestionChannel.GMAIL_SYNC)

    @pytest.mark.asyncio
    async def test_empty_batch(self, ingestor):
        summary = await ingestor.ingest_batch(ALICE_ID, [], IngestionChannel.GMAIL_SYNC)
        assert summary.to_dict() == {"count": 0, "trades": [], "parse_failed": 0, "duplicates": 0, "failed": 0}
