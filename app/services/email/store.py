"""Trade persistence for imported emails.

A store writes a trade and its ingestion record in one transaction. The
(user_id, message_id) pair is unique; a second write for the same email raises
DuplicateMessageError. Connectivity problems raise StoreUnavailableError so the
caller can fail the whole invocation instead of counting per-email failures.

The backend is picked by ``settings.trade_store_backend``: "database" for the
PostgreSQL tables, "memory" for tests and local runs without a database.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import async_session
from app.models.ingestion_record import IngestionRecord
from app.models.profile import Profile
from app.models.trade import Trade

logger = logging.getLogger(__name__)


class DuplicateMessageError(Exception):
    """The message was already imported for this user."""

    def __init__(self, user_id: str, message_id: str):
        super().__init__(f"Message {message_id} already imported for user {user_id}")
        self.user_id = user_id
        self.message_id = message_id


class StoreUnavailableError(Exception):
    """The trade store cannot be reached."""


class TradeStore(Protocol):
    async def find_user_by_email(self, email: str) -> str | None: ...

    async def has_ingested(self, user_id: str, message_id: str) -> bool: ...

    async def save_imported_trade(
        self, user_id: str, message_id: str, channel: str, fields: dict[str, Any]
    ) -> dict[str, Any]: ...

    async def list_trades(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]: ...


def _trade_to_dict(trade: Trade) -> dict[str, Any]:
    return {column.name: getattr(trade, column.name) for column in Trade.__table__.columns}


class SqlTradeStore:
    """Store backed by the profiles / trades / ingestion_records tables."""

    def __init__(self, session_factory=async_session):
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_factory() as session:
                yield session
        except (OperationalError, InterfaceError, OSError) as e:
            logger.error("Trade store unreachable: %s", e)
            raise StoreUnavailableError(str(e)) from e

    async def find_user_by_email(self, email: str) -> str | None:
        async with self._session() as session:
            result = await session.execute(select(Profile.id).where(Profile.email == email.lower()))
            return result.scalar_one_or_none()

    async def has_ingested(self, user_id: str, message_id: str) -> bool:
        async with self._session() as session:
            return await self._has_record(session, user_id, message_id)

    async def _has_record(self, session: AsyncSession, user_id: str, message_id: str) -> bool:
        result = await session.execute(
            select(IngestionRecord.id).where(
                IngestionRecord.user_id == user_id,
                IngestionRecord.message_id == message_id,
            )
        )
        return result.scalar_one_or_none() is not None

    async def save_imported_trade(
        self, user_id: str, message_id: str, channel: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        """Insert the trade and its ingestion record atomically."""
        async with self._session() as session:
            trade = Trade(user_id=user_id, **fields)
            session.add(trade)
            try:
                await session.flush()
                session.add(
                    IngestionRecord(
                        user_id=user_id,
                        message_id=message_id,
                        trade_id=trade.id,
                        channel=channel,
                    )
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                # Lost a race against a concurrent import of the same email
                if await self._has_record(session, user_id, message_id):
                    raise DuplicateMessageError(user_id, message_id) from None
                raise
            await session.refresh(trade)
            return _trade_to_dict(trade)

    async def list_trades(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        async with self._session() as session:
            result = await session.execute(
                select(Trade).where(Trade.user_id == user_id).order_by(Trade.id.desc()).limit(limit)
            )
            return [_trade_to_dict(trade) for trade in result.scalars()]


class MemoryTradeStore:
    """Process-local store with the same uniqueness guarantee as the tables."""

    def __init__(self):
        self._profiles: dict[str, str] = {}
        self._trades: list[dict[str, Any]] = []
        self._records: dict[tuple[str, str], int] = {}

    def add_profile(self, email: str, user_id: str | None = None) -> str:
        user_id = user_id or str(uuid.uuid4())
        self._profiles[email.lower()] = user_id
        return user_id

    async def find_user_by_email(self, email: str) -> str | None:
        return self._profiles.get(email.lower())

    async def has_ingested(self, user_id: str, message_id: str) -> bool:
        return (user_id, message_id) in self._records

    async def save_imported_trade(
        self, user_id: str, message_id: str, channel: str, fields: dict[str, Any]
    ) -> dict[str, Any]:
        key = (user_id, message_id)
        if key in self._records:
            raise DuplicateMessageError(user_id, message_id)
        trade = {
            **fields,
            "id": len(self._trades) + 1,
            "user_id": user_id,
            "created_at": datetime.now(UTC),
        }
        self._trades.append(trade)
        self._records[key] = trade["id"]
        logger.debug("Stored trade %d from %s via %s", trade["id"], message_id, channel)
        return dict(trade)

    async def list_trades(self, user_id: str, limit: int = 50) -> list[dict[str, Any]]:
        trades = [dict(t) for t in reversed(self._trades) if t["user_id"] == user_id]
        return trades[:limit]


def build_trade_store(backend: str | None = None) -> TradeStore:
    """Create the store named by ``backend`` (defaults to the configured one)."""
    backend = backend or settings.trade_store_backend
    if backend == "memory":
        return MemoryTradeStore()
    if backend == "database":
        return SqlTradeStore()
    raise ValueError(f"Unknown trade store backend: {backend!r}")


@lru_cache
def default_trade_store() -> TradeStore:
    """Process-wide store for the configured backend.

    Every caller in a process gets the same instance, so a memory backend
    keeps its ingestion records across requests and task runs.
    """
    return build_trade_store(settings.trade_store_backend)
