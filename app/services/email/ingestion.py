"""Email-to-trade ingestion.

Both entry points (mailbox pull and forwarded-mail webhook) run every email
through the same steps: parse, dedupe, persist. Emails are processed one at a
time in the order given. A single bad email is logged and counted without
aborting the batch; only an unreachable store fails the whole call.

Ingestion only ever creates trades. Existing trades are never modified, and
settlement emails become their own trade records.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from app.config import settings
from app.services.email.dedupe import DuplicateGuard
from app.services.email.pairs import format_currency_pair
from app.services.email.parser import EmailParser, ParsedTrade
from app.services.email.store import StoreUnavailableError, TradeStore

logger = logging.getLogger(__name__)


class IngestionChannel(str, Enum):
    GMAIL_SYNC = "gmail_sync"
    EMAIL_FORWARD = "email_forward"


class DataSource(str, Enum):
    MANUAL = "manual"
    GMAIL_SYNC = "gmail_sync"
    EMAIL_FORWARD = "email_forward"
    DEMO = "demo"


class IngestOutcome(str, Enum):
    PERSISTED = "persisted"
    PARSE_FAILED = "parse_failed"
    DUPLICATE = "duplicate"
    FAILED = "failed"


CHANNEL_TAGS = {
    IngestionChannel.GMAIL_SYNC: "AutoImport",
    IngestionChannel.EMAIL_FORWARD: "Forwarded",
}


@dataclass(frozen=True)
class RawEmail:
    """One source email as delivered by a mailbox or the forwarding webhook."""

    message_id: str
    sender: str
    subject: str
    body: str
    sender_name: str | None = None


@dataclass
class IngestResult:
    message_id: str
    outcome: IngestOutcome
    trade: dict[str, Any] | None = None
    parsed: ParsedTrade | None = None
    error: str | None = None


@dataclass
class IngestSummary:
    """Per-batch counters. ``count`` is the number of trades created."""

    results: list[IngestResult] = field(default_factory=list)

    def _with(self, outcome: IngestOutcome) -> list[IngestResult]:
        return [r for r in self.results if r.outcome == outcome]

    @property
    def count(self) -> int:
        return len(self._with(IngestOutcome.PERSISTED))

    @property
    def created(self) -> list[dict[str, Any]]:
        return [r.trade for r in self._with(IngestOutcome.PERSISTED)]

    @property
    def parse_failed(self) -> int:
        return len(self._with(IngestOutcome.PARSE_FAILED))

    @property
    def duplicates(self) -> int:
        return len(self._with(IngestOutcome.DUPLICATE))

    @property
    def failed(self) -> int:
        return len(self._with(IngestOutcome.FAILED))

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "trades": self.created,
            "parse_failed": self.parse_failed,
            "duplicates": self.duplicates,
            "failed": self.failed,
        }


def trade_fields(parsed: ParsedTrade, channel: IngestionChannel) -> dict[str, Any]:
    """Column values for a parsed trade imported through ``channel``."""
    tags = list(parsed.tags)
    channel_tag = CHANNEL_TAGS[channel]
    if channel_tag not in tags:
        tags.append(channel_tag)

    lot = parsed.lot_size_raw
    return {
        "pair": format_currency_pair(parsed.pair, "slash"),
        "pair_normalized": parsed.pair,
        "direction": parsed.direction,
        "entry_price": parsed.entry_price,
        "exit_price": parsed.exit_price,
        "stop_loss": parsed.stop_loss,
        "take_profit": parsed.take_profit,
        "entry_time": parsed.entry_time,
        "exit_time": parsed.exit_time,
        "timezone": parsed.timezone,
        "session": parsed.session,
        "lot_size": parsed.lot_size,
        "lot_size_raw_value": lot.value if lot else None,
        "lot_size_raw_unit": lot.unit if lot else None,
        "lot_size_raw_broker": lot.broker if lot else None,
        "pnl_amount": parsed.pnl_amount,
        "pnl_pips": parsed.pnl_pips,
        "pnl_currency": parsed.pnl_currency,
        "pnl_source": parsed.pnl_source,
        "notes": parsed.notes,
        "tags": tags,
        "is_verified": parsed.is_verified,
        "verification_source": channel.value,
        "broker": parsed.broker,
        "original_email_id": parsed.original_email_id,
        "data_source": DataSource(channel.value).value,
    }


class EmailIngestor:
    """Parse, dedupe and persist broker emails for one user at a time."""

    def __init__(
        self,
        store: TradeStore,
        parser: EmailParser | None = None,
        default_timezone: str = settings.default_timezone,
    ):
        self.store = store
        self.parser = parser or EmailParser(default_timezone=default_timezone)
        self.guard = DuplicateGuard(store)

    async def ingest_one(self, user_id: str, raw: RawEmail, channel: IngestionChannel) -> IngestResult:
        """Run one email through the pipeline.

        Raises StoreUnavailableError when persistence is unreachable; every
        other problem is captured in the returned result.
        """
        try:
            parsed = self.parser.parse(raw.subject, raw.body, raw.message_id, raw.sender, raw.sender_name)
        except Exception as e:
            logger.exception("Parser crashed on %s", raw.message_id)
            return IngestResult(raw.message_id, IngestOutcome.FAILED, error=str(e))

        if parsed is None:
            logger.info("Email %s (%r) is not a recognizable trade", raw.message_id, raw.subject)
            return IngestResult(raw.message_id, IngestOutcome.PARSE_FAILED)

        try:
            trade = await self.guard.persist_once(
                user_id, raw.message_id, trade_fields(parsed, channel), channel.value
            )
        except StoreUnavailableError:
            raise
        except Exception as e:
            logger.error("Failed to store trade from %s: %s", raw.message_id, e)
            return IngestResult(raw.message_id, IngestOutcome.FAILED, parsed=parsed, error=str(e))

        if trade is None:
            return IngestResult(raw.message_id, IngestOutcome.DUPLICATE, parsed=parsed)

        logger.info(
            "Imported %s %s %s from %s (trade %s)",
            parsed.broker or "unknown broker",
            parsed.direction,
            parsed.pair,
            raw.message_id,
            trade["id"],
        )
        return IngestResult(raw.message_id, IngestOutcome.PERSISTED, trade=trade, parsed=parsed)

    async def ingest_batch(
        self, user_id: str, emails: list[RawEmail], channel: IngestionChannel
    ) -> IngestSummary:
        summary = IngestSummary()
        for raw in emails:
            summary.results.append(await self.ingest_one(user_id, raw, channel))

        logger.info(
            "Ingested %d emails for %s via %s: %d created, %d duplicates, %d unparsed, %d failed",
            len(emails),
            user_id,
            channel.value,
            summary.count,
            summary.duplicates,
            summary.parse_failed,
            summary.failed,
        )
        return summary
