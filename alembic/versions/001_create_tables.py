"""Create initial tables: profiles, trades, ingestion_records.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "profiles",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "trades",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("pair", sa.String(12), nullable=False),
        sa.Column("pair_normalized", sa.String(12), nullable=False),
        sa.Column("direction", sa.String(4), nullable=False),
        sa.Column("entry_price", sa.Float(), nullable=True),
        sa.Column("exit_price", sa.Float(), nullable=True),
        sa.Column("stop_loss", sa.Float(), nullable=True),
        sa.Column("take_profit", sa.Float(), nullable=True),
        sa.Column("entry_time", sa.String(40), nullable=False),
        sa.Column("exit_time", sa.String(40), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=False),
        sa.Column("session", sa.String(10), nullable=True),
        sa.Column("lot_size", sa.Float(), nullable=True),
        sa.Column("lot_size_raw_value", sa.Float(), nullable=True),
        sa.Column("lot_size_raw_unit", sa.String(20), nullable=True),
        sa.Column("lot_size_raw_broker", sa.String(50), nullable=True),
        sa.Column("pnl_amount", sa.Float(), nullable=True),
        sa.Column("pnl_pips", sa.Float(), nullable=True),
        sa.Column("pnl_currency", sa.String(3), nullable=True),
        sa.Column("pnl_source", sa.String(10), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("is_verified", sa.Boolean(), nullable=False),
        sa.Column("verification_source", sa.String(20), nullable=True),
        sa.Column("broker", sa.String(50), nullable=True),
        sa.Column("original_email_id", sa.String(255), nullable=True),
        sa.Column("data_source", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
    )
    op.create_index("ix_trades_user_id", "trades", ["user_id"])

    op.create_table(
        "ingestion_records",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("message_id", sa.String(255), nullable=False),
        sa.Column("trade_id", sa.Integer(), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["profiles.id"]),
        sa.ForeignKeyConstraint(["trade_id"], ["trades.id"]),
        sa.UniqueConstraint("user_id", "message_id", name="uq_ingestion_user_message"),
    )


def downgrade() -> None:
    op.drop_table("ingestion_records")
    op.drop_index("ix_trades_user_id", table_name="trades")
    op.drop_table("trades")
    op.drop_table("profiles")
