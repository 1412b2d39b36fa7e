"""Repository pattern implementations for data access.

This module provides the session-scoped data access layer for wallets and
their position snapshots, the DTOs handed out to the rest of the
application, and the storage error taxonomy.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import ColumnElement, and_, delete, func, select, update

from perp_wallet_tracker.discovery.models import Side, SizeCategory
from perp_wallet_tracker.storage.models import WalletModel, WalletPositionModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base exception for wallet store errors."""


class StoreNotFoundError(StoreError):
    """Raised when an operation targets a wallet that is not stored."""

    def __init__(self, address: str) -> None:
        super().__init__(f"Wallet not found: {address}")
        self.address = address


class StoreWriteError(StoreError):
    """Raised when a read or write fails inside an otherwise healthy store."""


class StoreUnavailableError(StoreError):
    """Raised when the backing database cannot be reached."""


def _ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on the way back; all stored values are UTC.
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


@dataclass
class PositionSnapshotDTO:
    """Data transfer object for a wallet's position in one market."""

    wallet_address: str
    coin: str
    side: Side
    size: Decimal
    last_checked: datetime
    entry_price: Decimal | None = None
    leverage: Decimal | None = None
    unrealized_pnl: Decimal | None = None

    @classmethod
    def from_model(cls, model: WalletPositionModel) -> PositionSnapshotDTO:
        return cls(
            wallet_address=model.wallet_address,
            coin=model.coin,
            side=Side(model.side),
            size=model.size,
            last_checked=_ensure_utc(model.last_checked),  # type: ignore[arg-type]
            entry_price=model.entry_price,
            leverage=model.leverage,
            unrealized_pnl=model.unrealized_pnl,
        )


@dataclass
class WalletDTO:
    """Data transfer object for wallets."""

    address: str
    first_seen: datetime
    last_seen: datetime
    category: SizeCategory | None = None
    last_position_check: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: WalletModel) -> WalletDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            address=model.address,
            first_seen=_ensure_utc(model.first_seen),  # type: ignore[arg-type]
            last_seen=_ensure_utc(model.last_seen),  # type: ignore[arg-type]
            category=SizeCategory(model.category) if model.category else None,
            last_position_check=_ensure_utc(model.last_position_check),
            created_at=_ensure_utc(model.created_at),
        )

    @property
    def is_classified(self) -> bool:
        return self.category is not None


class WalletRepository:
    """Repository for wallet data access.

    Every address argument is lower-cased before it reaches the database.
    The repository never commits; the surrounding session scope does.
    """

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session.
        """
        self.session = session

    async def get_by_address(self, address: str) -> WalletDTO | None:
        """Get wallet by address.

        Args:
            address: Wallet address (any letter case).

        Returns:
            WalletDTO if found, None otherwise.
        """
        model = await self.session.get(WalletModel, address.lower())
        return WalletDTO.from_model(model) if model else None

    async def list_all(self) -> list[WalletDTO]:
        result = await self.session.execute(
            select(WalletModel).order_by(WalletModel.last_seen.desc(), WalletModel.address)
        )
        return [WalletDTO.from_model(m) for m in result.scalars().all()]

    async def get_existing_addresses(self, addresses: Sequence[str]) -> set[str]:
        """Return the subset of addresses that are already stored (lower-cased)."""
        normalized = {addr.lower() for addr in addresses}
        if not normalized:
            return set()
        result = await self.session.execute(
            select(WalletModel.address).where(WalletModel.address.in_(normalized))
        )
        return set(result.scalars().all())

    async def insert(self, address: str, *, seen_at: datetime) -> WalletDTO:
        """Insert a new, unclassified wallet.

        Raises:
            IntegrityError if the address already exists.
        """
        model = WalletModel(
            address=address.lower(),
            first_seen=seen_at,
            last_seen=seen_at,
            category=None,
            last_position_check=None,
            created_at=seen_at,
        )
        self.session.add(model)
        await self.session.flush()
        return WalletDTO.from_model(model)

    async def insert_many(self, addresses: Sequence[str], *, seen_at: datetime) -> list[str]:
        """Insert wallets that are not stored yet.

        Addresses already present and duplicates within `addresses` are
        skipped.

        Returns:
            The addresses that were inserted, in input order.
        """
        existing = await self.get_existing_addresses(addresses)
        created: list[str] = []
        for address in addresses:
            normalized = address.lower()
            if normalized in existing:
                continue
            existing.add(normalized)
            created.append(normalized)

        if not created:
            return []

        self.session.add_all(
            [
                WalletModel(
                    address=addr,
                    first_seen=seen_at,
                    last_seen=seen_at,
                    category=None,
                    last_position_check=None,
                    created_at=seen_at,
                )
                for addr in created
            ]
        )
        await self.session.flush()
        return created

    async def update_category(
        self,
        address: str,
        category: SizeCategory,
        *,
        checked_at: datetime,
        seen_at: datetime,
        positions: Sequence[PositionSnapshotDTO] | None = None,
    ) -> WalletDTO:
        """Set a wallet's size category and optionally replace its positions.

        Args:
            address: Wallet address.
            category: New size category.
            checked_at: Time the positions were inspected.
            seen_at: New last_seen value.
            positions: Replacement position snapshot rows; existing rows are
                kept when None.

        Returns:
            Updated WalletDTO.

        Raises:
            StoreNotFoundError: If the wallet does not exist.
        """
        normalized = address.lower()
        model = await self.session.get(WalletModel, normalized)
        if model is None:
            raise StoreNotFoundError(normalized)

        model.category = category.value
        model.last_position_check = checked_at
        model.last_seen = seen_at

        if positions is not None:
            await self.session.execute(
                delete(WalletPositionModel).where(WalletPositionModel.wallet_address == normalized)
            )
            self.session.add_all(
                [
                    WalletPositionModel(
                        wallet_address=normalized,
                        coin=p.coin,
                        side=p.side.value,
                        size=p.size,
                        entry_price=p.entry_price,
                        leverage=p.leverage,
                        unrealized_pnl=p.unrealized_pnl,
                        last_checked=p.last_checked,
                    )
                    for p in positions
                ]
            )

        await self.session.flush()
        return WalletDTO.from_model(model)

    async def touch_last_seen(self, addresses: Sequence[str], *, seen_at: datetime) -> int:
        """Refresh last_seen for stored wallets.

        Returns:
            Number of wallets updated.
        """
        normalized = {addr.lower() for addr in addresses}
        if not normalized:
            return 0
        result = await self.session.execute(
            update(WalletModel)
            .where(WalletModel.address.in_(normalized))
            .values(last_seen=seen_at)
        )
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def delete(self, address: str) -> bool:
        """Delete a wallet and its position snapshots.

        Returns:
            True if deleted, False if not found.
        """
        result = await self.session.execute(
            delete(WalletModel).where(WalletModel.address == address.lower())
        )
        # SQLAlchemy Result does have rowcount but typing doesn't reflect it
        return (result.rowcount or 0) > 0  # type: ignore[attr-defined]

    async def delete_seen_before(self, cutoff: datetime) -> int:
        """Delete wallets whose last_seen is older than `cutoff`.

        Returns:
            Number of wallets deleted.
        """
        result = await self.session.execute(
            delete(WalletModel).where(WalletModel.last_seen < cutoff)
        )
        return result.rowcount or 0  # type: ignore[attr-defined]

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(WalletModel))
        return int(result.scalar_one())

    async def list_by_category(
        self,
        category: SizeCategory,
        *,
        side: Side | None = None,
        coin: str | None = None,
    ) -> list[WalletDTO]:
        """List wallets in a size category, most recently seen first.

        Args:
            category: Size category to match.
            side: Require a long or short position snapshot (neutral means no filter).
            coin: Require a position snapshot in this market.

        Returns:
            List of WalletDTOs.
        """
        stmt = (
            select(WalletModel)
            .where(self._category_filter(category, side=side, coin=coin))
            .order_by(WalletModel.last_seen.desc(), WalletModel.address)
        )
        result = await self.session.execute(stmt)
        return [WalletDTO.from_model(m) for m in result.scalars().all()]

    async def count_by_category(
        self,
        category: SizeCategory,
        *,
        side: Side | None = None,
        coin: str | None = None,
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(WalletModel)
            .where(self._category_filter(category, side=side, coin=coin))
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def list_positions(self, address: str) -> list[PositionSnapshotDTO]:
        result = await self.session.execute(
            select(WalletPositionModel)
            .where(WalletPositionModel.wallet_address == address.lower())
            .order_by(WalletPositionModel.coin, WalletPositionModel.side)
        )
        return [PositionSnapshotDTO.from_model(m) for m in result.scalars().all()]

    @staticmethod
    def _category_filter(
        category: SizeCategory,
        *,
        side: Side | None,
        coin: str | None,
    ) -> ColumnElement[bool]:
        position_conditions = []
        if side is not None and side is not Side.NEUTRAL:
            position_conditions.append(WalletPositionModel.side == side.value)
        if coin:
            position_conditions.append(WalletPositionModel.coin == coin)

        condition = WalletModel.category == category.value
        if position_conditions:
            condition = and_(condition, WalletModel.positions.any(and_(*position_conditions)))
        return condition
