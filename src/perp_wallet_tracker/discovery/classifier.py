"""Wallet classification by open position exposure.

This module provides pure helpers that reduce a wallet's open positions to
a size category and dominant side, and the ClassificationEngine that
applies them to stored wallets.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from decimal import Decimal

from perp_wallet_tracker.discovery.models import (
    PositionSource,
    Side,
    SizeCategory,
    WalletClassification,
    WalletStore,
    now_utc,
)
from perp_wallet_tracker.ingestor.gmx_client import SourceError
from perp_wallet_tracker.ingestor.models import Position, normalize_address
from perp_wallet_tracker.storage.repos import (
    PositionSnapshotDTO,
    StoreError,
    StoreUnavailableError,
    WalletDTO,
)

logger = logging.getLogger(__name__)


def classify_exposure(exposure_usd: Decimal) -> SizeCategory:
    """Map an aggregate USD exposure to its size category.

    Raises:
        ValueError: If the exposure is negative.
    """
    return SizeCategory.from_usd(exposure_usd)


def aggregate_exposure(positions: Iterable[Position]) -> Decimal:
    """Sum of absolute position sizes in USD."""
    return sum((abs(p.size_usd) for p in positions), Decimal("0"))


def determine_side(positions: Iterable[Position]) -> Side:
    """Dominant side by position count.

    Strictly more longs gives LONG, strictly more shorts gives SHORT,
    anything else (including no positions) is NEUTRAL.
    """
    longs = 0
    shorts = 0
    for position in positions:
        if position.is_long:
            longs += 1
        else:
            shorts += 1
    if longs > shorts:
        return Side.LONG
    if shorts > longs:
        return Side.SHORT
    return Side.NEUTRAL


def summarize_positions(positions: Sequence[Position]) -> WalletClassification:
    exposure = aggregate_exposure(positions)
    return WalletClassification(
        exposure_usd=exposure,
        category=classify_exposure(exposure),
        side=determine_side(positions),
        position_count=len(positions),
    )


def build_snapshots(
    address: str,
    positions: Iterable[Position],
    checked_at: datetime,
) -> list[PositionSnapshotDTO]:
    """One snapshot row per (market, side), sizes summed."""
    sizes: dict[tuple[str, Side], Decimal] = {}
    for position in positions:
        key = (position.market, position.side)
        sizes[key] = sizes.get(key, Decimal("0")) + abs(position.size_usd)
    rows = sorted(sizes.items(), key=lambda item: (item[0][0], item[0][1].value))
    return [
        PositionSnapshotDTO(
            wallet_address=normalize_address(address),
            coin=coin,
            side=side,
            size=size,
            last_checked=checked_at,
        )
        for (coin, side), size in rows
    ]


class ClassificationEngine:
    """Classifies stored wallets from the GMX position feed.

    Example:
        ```python
        classifier = ClassificationEngine(gmx_client, store, max_workers=4)
        classified = await classifier.classify_batch(["0xaa...", "0xbb..."])
        ```
    """

    def __init__(
        self,
        source: PositionSource,
        store: WalletStore,
        *,
        max_workers: int = 1,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize the classification engine.

        Args:
            source: Position feed.
            store: Wallet store receiving the categories.
            max_workers: Wallets classified concurrently by classify_batch.
            clock: Source of the position check timestamp.
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self._source = source
        self._store = store
        self._max_workers = max_workers
        self._clock = clock

    async def classify(
        self,
        address: str,
        positions: Sequence[Position] | None = None,
    ) -> WalletDTO | None:
        """Classify one wallet and persist the result.

        Args:
            address: Wallet address (any letter case).
            positions: Shared position list; the feed is queried when None.

        Returns:
            The updated wallet, or None if the wallet has no open positions
            or the fetch/store step failed.

        Raises:
            StoreUnavailableError: If the wallet store cannot be reached.
        """
        if positions is None:
            try:
                positions = await self._source.fetch_positions()
            except SourceError as e:
                logger.warning("Position fetch failed while classifying %s: %s", address, e)
                return None

        owned = [p for p in positions if p.belongs_to(address)]
        if not owned:
            logger.debug("Wallet %s has no open positions, leaving unclassified", address)
            return None

        summary = summarize_positions(owned)
        checked_at = self._clock()
        try:
            wallet = await self._store.update_category(
                address,
                summary.category,
                checked_at,
                positions=build_snapshots(address, owned, checked_at),
            )
        except StoreUnavailableError:
            raise
        except StoreError as e:
            logger.warning("Failed to store classification for %s: %s", address, e)
            return None

        logger.debug(
            "Classified %s: category=%s, side=%s, exposure=%s, positions=%d",
            wallet.address,
            summary.category.value,
            summary.side.value,
            summary.exposure_usd,
            summary.position_count,
        )
        return wallet

    async def classify_batch(
        self,
        addresses: Sequence[str],
        positions: Sequence[Position] | None = None,
    ) -> int:
        """Classify several wallets against a single position snapshot.

        Returns:
            Number of wallets classified.

        Raises:
            StoreUnavailableError: If the wallet store cannot be reached.
        """
        if not addresses:
            return 0

        if positions is None:
            try:
                positions = await self._source.fetch_positions()
            except SourceError as e:
                logger.warning(
                    "Position fetch failed, skipping classification of %d wallets: %s",
                    len(addresses),
                    e,
                )
                return 0

        semaphore = asyncio.Semaphore(self._max_workers)
        shared = positions

        async def classify_one(address: str) -> WalletDTO | None:
            async with semaphore:
                return await self.classify(address, shared)

        # A failing task cancels its siblings so no write outlives the call.
        try:
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(classify_one(addr)) for addr in addresses]
        except ExceptionGroup as eg:
            raise eg.exceptions[0] from None

        classified = sum(1 for task in tasks if task.result() is not None)
        logger.info("Classified %d of %d wallets", classified, len(addresses))
        return classified
