"""Broker email ingestion for the FX journal.

Parses trade confirmation emails from Japanese and international brokers,
normalizes lot sizes and timestamps, and stores each email at most once.
"""

from app.services.email.ingestion import EmailIngestor, IngestionChannel, RawEmail
from app.services.email.parser import EmailParser, ParsedTrade, parse_trade_email

__all__ = ["EmailIngestor", "EmailParser", "IngestionChannel", "ParsedTrade", "RawEmail", "parse_trade_email"]
