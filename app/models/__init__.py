"""SQLAlchemy models for the FX journal."""

from app.models.profile import Profile
from app.models.trade import Trade
from app.models.ingestion_record import IngestionRecord

__all__ = ["Profile", "Trade", "IngestionRecord"]
