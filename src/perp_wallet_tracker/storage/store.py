"""Database-backed wallet store.

Implements the WalletStore protocol on top of DatabaseManager: each
operation runs in its own session and transaction, writes are serialized
by an asyncio lock, and SQLAlchemy failures are mapped to StoreError
subclasses.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timedelta

from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from perp_wallet_tracker.discovery.models import Side, SizeCategory, now_utc
from perp_wallet_tracker.storage.database import DatabaseManager
from perp_wallet_tracker.storage.repos import (
    PositionSnapshotDTO,
    StoreError,
    StoreUnavailableError,
    StoreWriteError,
    WalletDTO,
    WalletRepository,
)

logger = logging.getLogger(__name__)


class DatabaseWalletStore:
    """WalletStore implementation backed by SQLAlchemy.

    Example:
        >>> db = DatabaseManager("sqlite+aiosqlite:///./wallets.db")
        >>> await db.init_schema_async()
        >>> store = DatabaseWalletStore(db)
        >>> await store.create_batch(["0xAbC..."])
    """

    def __init__(
        self,
        db: DatabaseManager,
        *,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize the store.

        Args:
            db: Database manager providing sessions.
            clock: Source of "now" for first_seen/last_seen stamps.
        """
        self._db = db
        self._clock = clock
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def _repository(self, operation: str) -> AsyncIterator[WalletRepository]:
        # Only a failure to reach the database is fatal. An OperationalError
        # raised by a statement on a live connection (locked database,
        # statement timeout) fails this operation alone.
        connected = False
        try:
            async with self._db.get_async_session() as session:
                await session.connection()
                connected = True
                yield WalletRepository(session)
        except StoreError:
            raise
        except InterfaceError as e:
            raise self._unavailable(operation, e) from e
        except OperationalError as e:
            if not connected or e.connection_invalidated:
                raise self._unavailable(operation, e) from e
            logger.warning("Wallet store %s failed: %s", operation, e)
            raise StoreWriteError(f"{operation} failed: {e}") from e
        except SQLAlchemyError as e:
            logger.warning("Wallet store %s failed: %s", operation, e)
            raise StoreWriteError(f"{operation} failed: {e}") from e

    @staticmethod
    def _unavailable(operation: str, error: Exception) -> StoreUnavailableError:
        logger.error("Wallet store unavailable during %s: %s", operation, error)
        return StoreUnavailableError(f"{operation} failed: {error}")

    @asynccontextmanager
    async def _writer(self, operation: str) -> AsyncIterator[WalletRepository]:
        async with self._write_lock:
            async with self._repository(operation) as repo:
                yield repo

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_all(self) -> list[WalletDTO]:
        async with self._repository("fetch_all") as repo:
            return await repo.list_all()

    async def fetch_by_address(self, address: str) -> WalletDTO | None:
        async with self._repository("fetch_by_address") as repo:
            return await repo.get_by_address(address)

    async def exists(self, address: str) -> bool:
        return await self.fetch_by_address(address) is not None

    async def existing_addresses(self, addresses: Sequence[str]) -> set[str]:
        async with self._repository("existing_addresses") as repo:
            return await repo.get_existing_addresses(addresses)

    async def count(self) -> int:
        async with self._repository("count") as repo:
            return await repo.count()

    async def fetch_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> list[WalletDTO]:
        async with self._repository("fetch_by_category") as repo:
            return await repo.list_by_category(category, side=side, coin=coin)

    async def count_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> int:
        async with self._repository("count_by_category") as repo:
            return await repo.count_by_category(category, side=side, coin=coin)

    async def statistics(self, coin: str | None = None) -> dict[SizeCategory, dict[Side, int]]:
        """Count wallets per size category holding long and short positions.

        A wallet holding both sides is counted under each.
        """
        stats: dict[SizeCategory, dict[Side, int]] = {}
        async with self._repository("statistics") as repo:
            for category in SizeCategory:
                stats[category] = {
                    side: await repo.count_by_category(category, side=side, coin=coin)
                    for side in (Side.LONG, Side.SHORT)
                }
        return stats

    async def fetch_positions(self, address: str) -> list[PositionSnapshotDTO]:
        async with self._repository("fetch_positions") as repo:
            return await repo.list_positions(address)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, address: str) -> WalletDTO:
        """Create a wallet, or return the stored one if it already exists."""
        async with self._writer("create") as repo:
            existing = await repo.get_by_address(address)
            if existing is not None:
                return existing
            return await repo.insert(address, seen_at=self._clock())

    async def create_batch(self, addresses: Sequence[str]) -> int:
        """Create every wallet in `addresses` that is not stored yet.

        Returns:
            Number of wallets created.
        """
        if not addresses:
            return 0
        async with self._writer("create_batch") as repo:
            created = await repo.insert_many(addresses, seen_at=self._clock())
        logger.debug("Created %d of %d wallets", len(created), len(addresses))
        return len(created)

    async def update_category(
        self,
        address: str,
        category: SizeCategory,
        checked_at: datetime,
        positions: Sequence[PositionSnapshotDTO] | None = None,
    ) -> WalletDTO:
        """Write a wallet's category, check time and positions in one transaction.

        Raises:
            StoreNotFoundError: If the wallet is not stored.
        """
        async with self._writer("update_category") as repo:
            return await repo.update_category(
                address,
                category,
                checked_at=checked_at,
                seen_at=self._clock(),
                positions=positions,
            )

    async def update_last_seen(self, address: str) -> None:
        await self.touch_last_seen([address])

    async def touch_last_seen(self, addresses: Sequence[str]) -> int:
        if not addresses:
            return 0
        async with self._writer("touch_last_seen") as repo:
            return await repo.touch_last_seen(addresses, seen_at=self._clock())

    async def delete(self, address: str) -> bool:
        async with self._writer("delete") as repo:
            return await repo.delete(address)

    async def delete_inactive(self, older_than_days: int) -> int:
        """Delete wallets not seen within the last `older_than_days` days.

        Raises:
            ValueError: If `older_than_days` is less than 1.
        """
        if older_than_days < 1:
            raise ValueError(f"older_than_days must be at least 1, got {older_than_days}")
        cutoff = self._clock() - timedelta(days=older_than_days)
        async with self._writer("delete_inactive") as repo:
            deleted = await repo.delete_seen_before(cutoff)
        logger.info("Deleted %d wallets inactive since %s", deleted, cutoff.isoformat())
        return deleted
