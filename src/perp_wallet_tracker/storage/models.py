"""SQLAlchemy models for persistent storage.

This module defines the database schema for tracked wallets and the
per-market position snapshots recorded when a wallet is classified.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class WalletModel(Base):
    """SQLAlchemy model for discovered wallets.

    The address is the sole identity key and is always stored lower-case.
    """

    __tablename__ = "wallets"

    address: Mapped[str] = mapped_column(String(42), primary_key=True)
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    category: Mapped[str | None] = mapped_column(String(20), nullable=True)
    last_position_check: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    positions: Mapped[list[WalletPositionModel]] = relationship(
        back_populates="wallet",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_wallets_category", "category"),
        Index("idx_wallets_last_seen", "last_seen"),
    )


class WalletPositionModel(Base):
    """Latest known position of a wallet in one market, per side."""

    __tablename__ = "wallet_positions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(
        String(42),
        ForeignKey("wallets.address", ondelete="CASCADE"),
        nullable=False,
    )
    coin: Mapped[str] = mapped_column(String(80), nullable=False)  # GMX market address
    side: Mapped[str] = mapped_column(String(5), nullable=False)  # long/short
    size: Mapped[Decimal] = mapped_column(Numeric(40, 10), nullable=False)

    # Not provided by the GMX position feed.
    entry_price: Mapped[Decimal | None] = mapped_column(Numeric(30, 10), nullable=True)
    leverage: Mapped[Decimal | None] = mapped_column(Numeric(10, 4), nullable=True)
    unrealized_pnl: Mapped[Decimal | None] = mapped_column(Numeric(40, 10), nullable=True)

    last_checked: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    wallet: Mapped[WalletModel] = relationship(back_populates="positions")

    __table_args__ = (
        UniqueConstraint("wallet_address", "coin", "side", name="uq_wallet_position"),
        Index("idx_wallet_positions_wallet", "wallet_address"),
        Index("idx_wallet_positions_coin_side", "coin", "side"),
    )
