"""Processed-email ledger used for idempotent ingestion."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class IngestionRecord(Base):
    """One row per source email that produced a trade. Written once, never updated."""

    __tablename__ = "ingestion_records"
    __table_args__ = (UniqueConstraint("user_id", "message_id", name="uq_ingestion_user_message"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False)
    message_id: Mapped[str] = mapped_column(String(255), nullable=False)
    trade_id: Mapped[int] = mapped_column(Integer, ForeignKey("trades.id"), nullable=False)
    channel: Mapped[str] = mapped_column(String(20), nullable=False)  # gmail_sync, email_forward
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
