"""Initial schema for wallets and wallet position snapshots.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Wallets table
    op.create_table(
        "wallets",
        sa.Column("address", sa.String(42), nullable=False),
        sa.Column("first_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=False),
        sa.Column("category", sa.String(20), nullable=True),
        sa.Column("last_position_check", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("address"),
    )
    op.create_index("idx_wallets_category", "wallets", ["category"])
    op.create_index("idx_wallets_last_seen", "wallets", ["last_seen"])

    # Wallet position snapshots table
    op.create_table(
        "wallet_positions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("wallet_address", sa.String(42), nullable=False),
        sa.Column("coin", sa.String(80), nullable=False),
        sa.Column("side", sa.String(5), nullable=False),
        sa.Column("size", sa.Numeric(40, 10), nullable=False),
        sa.Column("entry_price", sa.Numeric(30, 10), nullable=True),
        sa.Column("leverage", sa.Numeric(10, 4), nullable=True),
        sa.Column("unrealized_pnl", sa.Numeric(40, 10), nullable=True),
        sa.Column("last_checked", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(
            ["wallet_address"], ["wallets.address"], ondelete="CASCADE"
        ),
        sa.UniqueConstraint("wallet_address", "coin", "side", name="uq_wallet_position"),
    )
    op.create_index("idx_wallet_positions_wallet", "wallet_positions", ["wallet_address"])
    op.create_index("idx_wallet_positions_coin_side", "wallet_positions", ["coin", "side"])


def downgrade() -> None:
    op.drop_index("idx_wallet_positions_coin_side", table_name="wallet_positions")
    op.drop_index("idx_wallet_positions_wallet", table_name="wallet_positions")
    op.drop_table("wallet_positions")

    op.drop_index("idx_wallets_last_seen", table_name="wallets")
    op.drop_index("idx_wallets_category", table_name="wallets")
    op.drop_table("wallets")
