"""Shared service dependencies for the API routers.

Tests swap the store out with ``app.dependency_overrides[get_trade_store]``.
"""

from fastapi import Depends

from app.config import settings
from app.services.email.ingestion import EmailIngestor
from app.services.email.store import TradeStore, default_trade_store


def get_trade_store() -> TradeStore:
    return default_trade_store()


def get_ingestor(store: TradeStore = Depends(get_trade_store)) -> EmailIngestor:
    return EmailIngestor(store, default_timezone=settings.default_timezone)
