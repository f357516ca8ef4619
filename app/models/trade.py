"""Journal trade record model."""

from datetime import UTC, datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base


class Trade(Base):
    """One journal trade. Prices and lots are floats; FX quotes have 3-5 decimals."""

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("profiles.id"), nullable=False, index=True)
    pair: Mapped[str] = mapped_column(String(12), nullable=False)
    pair_normalized: Mapped[str] = mapped_column(String(12), nullable=False)
    direction: Mapped[str] = mapped_column(String(4), nullable=False)  # BUY, SELL
    entry_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    exit_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    stop_loss: Mapped[float | None] = mapped_column(Float, nullable=True)
    take_profit: Mapped[float | None] = mapped_column(Float, nullable=True)
    entry_time: Mapped[str] = mapped_column(String(40), nullable=False)  # ISO-8601 with offset
    exit_time: Mapped[str | None] = mapped_column(String(40), nullable=True)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False)
    session: Mapped[str | None] = mapped_column(String(10), nullable=True)  # tokyo, london, newyork, sydney
    lot_size: Mapped[float | None] = mapped_column(Float, nullable=True)  # standard lots
    lot_size_raw_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    lot_size_raw_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    lot_size_raw_broker: Mapped[str | None] = mapped_column(String(50), nullable=True)
    pnl_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    pnl_pips: Mapped[float | None] = mapped_column(Float, nullable=True)
    pnl_currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    pnl_source: Mapped[str | None] = mapped_column(String(10), nullable=True)  # email, manual
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    verification_source: Mapped[str | None] = mapped_column(String(20), nullable=True)
    broker: Mapped[str | None] = mapped_column(String(50), nullable=True)
    original_email_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data_source: Mapped[str] = mapped_column(String(20), nullable=False, default="manual")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
