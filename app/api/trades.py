"""Trade API routes: journal history for a user."""

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from app.api.auth import require_api_key
from app.api.deps import get_trade_store
from app.services.email.store import StoreUnavailableError, TradeStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/trades", tags=["trades"])


@router.get("/", dependencies=[Depends(require_api_key)])
async def list_trades(
    user_id: str = Query(..., min_length=1, max_length=36),
    limit: int = Query(50, ge=1, le=500),
    store: TradeStore = Depends(get_trade_store),
):
    """List a user's most recent trades, newest first."""
    try:
        trades = await store.list_trades(user_id, limit=limit)
    except StoreUnavailableError:
        return JSONResponse(status_code=503, content={"error": "Trade store unavailable"})
    return {"trades": trades}
