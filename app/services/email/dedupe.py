"""Idempotent trade creation keyed on (user, source message).

The check before writing only saves work; correctness comes from the store's
unique constraint. Two invocations racing on the same email both pass the
check, one insert wins, and the loser gets DuplicateMessageError, which is
reported as "already imported" rather than as a failure.
"""

import logging
from typing import Any

from app.services.email.store import DuplicateMessageError, TradeStore

logger = logging.getLogger(__name__)


class DuplicateGuard:
    def __init__(self, store: TradeStore):
        self._store = store

    async def is_duplicate(self, user_id: str, message_id: str) -> bool:
        return await self._store.has_ingested(user_id, message_id)

    async def persist_once(
        self, user_id: str, message_id: str, fields: dict[str, Any], channel: str
    ) -> dict[str, Any] | None:
        """Save the trade unless this message was already imported.

        Returns the stored trade, or None when the message is a duplicate.
        """
        if await self.is_duplicate(user_id, message_id):
            logger.info("Skipping %s for user %s: already imported", message_id, user_id)
            return None
        try:
            return await self._store.save_imported_trade(user_id, message_id, channel, fields)
        except DuplicateMessageError:
            logger.info("Skipping %s for user %s: imported concurrently", message_id, user_id)
            return None
