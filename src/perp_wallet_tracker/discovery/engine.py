"""Wallet discovery.

This module provides the DiscoveryEngine class that gathers candidate
wallet addresses from the GMX position feed and the static seed list,
deduplicates them against the wallet store, and creates the new ones in
bounded batches.
"""

import logging
from collections.abc import Callable, Iterable, Sequence
from datetime import datetime
from pathlib import Path

from perp_wallet_tracker.discovery.models import (
    DiscoveryResult,
    PositionSource,
    WalletStore,
    now_utc,
)
from perp_wallet_tracker.ingestor.gmx_client import SourceError
from perp_wallet_tracker.ingestor.models import Position, normalize_address
from perp_wallet_tracker.ingestor.seeds import SeedLoadError, load_seed_addresses
from perp_wallet_tracker.storage.repos import StoreError, StoreUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 20


def collect_addresses(positions: Iterable[Position], seeds: Iterable[str]) -> list[str]:
    """Union position accounts and seed addresses.

    Returns:
        Sorted list of unique, normalized, non-blank addresses.
    """
    unique = {normalize_address(p.account) for p in positions}
    unique.update(normalize_address(s) for s in seeds)
    unique.discard("")
    return sorted(unique)


def partition(addresses: Sequence[str], batch_size: int) -> list[list[str]]:
    if batch_size < 1:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    return [list(addresses[i : i + batch_size]) for i in range(0, len(addresses), batch_size)]


class DiscoveryEngine:
    """Discovers wallets and registers the new ones in the wallet store.

    Source and seed failures degrade to an empty candidate list. A store
    failure skips the affected batch only, except StoreUnavailableError
    which aborts the run.

    Example:
        ```python
        engine = DiscoveryEngine(gmx_client, store)
        result = await engine.discover()
        print(result.wallets_created)
        ```
    """

    def __init__(
        self,
        source: PositionSource,
        store: WalletStore,
        *,
        seed_path: Path | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        """Initialize the discovery engine.

        Args:
            source: Position feed.
            store: Wallet store.
            seed_path: Seed list file; no seeds are used when None.
            batch_size: Addresses checked and created per store round trip.
            clock: Source of "now" used for log timestamps.
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self._source = source
        self._store = store
        self._seed_path = seed_path
        self._batch_size = batch_size
        self._clock = clock

    @property
    def batch_size(self) -> int:
        return self._batch_size

    async def discover(self, positions: Sequence[Position] | None = None) -> DiscoveryResult:
        """Run one discovery pass.

        Args:
            positions: Positions already fetched by the caller; the feed is
                queried when None.

        Returns:
            DiscoveryResult with the number of unique candidates and the
            wallets created.

        Raises:
            StoreUnavailableError: If the wallet store cannot be reached.
        """
        started_at = self._clock()
        if positions is None:
            positions = await self._fetch_positions()
        seeds = self._load_seeds()

        addresses = collect_addresses(positions, seeds)
        if not addresses:
            logger.info("Discovery found no candidate wallets")
            return DiscoveryResult()

        created: list[str] = []
        batches = partition(addresses, self._batch_size)
        for index, batch in enumerate(batches, start=1):
            try:
                created.extend(await self._process_batch(batch))
            except StoreUnavailableError:
                raise
            except StoreError as e:
                logger.warning(
                    "Discovery batch %d/%d (%d addresses) failed, skipping: %s",
                    index,
                    len(batches),
                    len(batch),
                    e,
                )

        logger.info(
            "Discovery started %s: %d candidates (%d positions, %d seeds), %d wallets created",
            started_at.isoformat(),
            len(addresses),
            len(positions),
            len(seeds),
            len(created),
        )
        return DiscoveryResult(
            addresses_discovered=len(addresses),
            wallets_created=len(created),
            created_addresses=tuple(created),
        )

    async def _process_batch(self, batch: list[str]) -> list[str]:
        existing = await self._store.existing_addresses(batch)
        if existing:
            await self._store.touch_last_seen(sorted(existing))

        new = [addr for addr in batch if addr not in existing]
        if not new:
            return []

        count = await self._store.create_batch(new)
        if count != len(new):
            logger.debug("Store created %d of %d new wallets in batch", count, len(new))
        return new[:count]

    async def _fetch_positions(self) -> list[Position]:
        try:
            return await self._source.fetch_positions()
        except SourceError as e:
            logger.warning("Position fetch failed during discovery: %s", e)
            return []

    def _load_seeds(self) -> list[str]:
        if self._seed_path is None:
            return []
        try:
            return load_seed_addresses(self._seed_path)
        except SeedLoadError as e:
            logger.warning("Seed list unavailable: %s", e)
            return []
