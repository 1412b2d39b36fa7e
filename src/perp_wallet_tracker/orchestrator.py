"""Refresh cycle orchestration.

This module provides the RefreshOrchestrator class that runs discovery and
classification as one serialized cycle against a single position snapshot.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from perp_wallet_tracker.discovery.models import PositionSource, RefreshResult, WalletStore
from perp_wallet_tracker.events import RefreshEvent, RefreshEventPublisher
from perp_wallet_tracker.ingestor.gmx_client import SourceError

if TYPE_CHECKING:
    from perp_wallet_tracker.discovery.classifier import ClassificationEngine
    from perp_wallet_tracker.discovery.engine import DiscoveryEngine
    from perp_wallet_tracker.ingestor.models import Position

logger = logging.getLogger(__name__)


class RefreshOrchestrator:
    """Runs one refresh cycle at a time.

    A cycle fetches the position feed once, discovers wallets, classifies
    the wallets it created and publishes a RefreshEvent. A caller that
    arrives while a cycle is in flight waits for it and then runs its own.

    Example:
        ```python
        orchestrator = RefreshOrchestrator(client, store, discovery, classifier)
        result = await orchestrator.run_refresh_cycle()
        print(result.discovered, result.classified)
        ```
    """

    def __init__(
        self,
        source: PositionSource,
        store: WalletStore,
        discovery: DiscoveryEngine,
        classifier: ClassificationEngine,
        *,
        publisher: RefreshEventPublisher | None = None,
    ) -> None:
        self._source = source
        self._store = store
        self._discovery = discovery
        self._classifier = classifier
        self._publisher = publisher or RefreshEventPublisher()
        self._cycle_lock = asyncio.Lock()

    @property
    def publisher(self) -> RefreshEventPublisher:
        return self._publisher

    @property
    def is_refreshing(self) -> bool:
        return self._cycle_lock.locked()

    async def run_refresh_cycle(self) -> RefreshResult:
        """Discover new wallets and classify them.

        Returns:
            RefreshResult(discovered=wallets created, classified=wallets
            classified); both zero when nothing new was found.

        Raises:
            StoreUnavailableError: If the wallet store cannot be reached.
        """
        async with self._cycle_lock:
            positions = await self._fetch_positions()

            discovery = await self._discovery.discover(positions)
            if discovery.wallets_created == 0:
                logger.info(
                    "Refresh cycle found no new wallets (%d candidates)",
                    discovery.addresses_discovered,
                )
                return RefreshResult()

            classified = await self._classifier.classify_batch(
                list(discovery.created_addresses), positions
            )
            result = RefreshResult(discovered=discovery.wallets_created, classified=classified)

            await self._publisher.publish(
                RefreshEvent(
                    discovered=result.discovered,
                    classified=result.classified,
                    occurred_at=result.completed_at,
                )
            )
            logger.info(
                "Refresh cycle complete: discovered=%d, classified=%d",
                result.discovered,
                result.classified,
            )
            return result

    async def sweep_inactive(self, older_than_days: int) -> int:
        """Delete wallets not seen for `older_than_days` days."""
        async with self._cycle_lock:
            return await self._store.delete_inactive(older_than_days)

    async def _fetch_positions(self) -> list[Position]:
        try:
            return await self._source.fetch_positions()
        except SourceError as e:
            logger.warning("Position fetch failed, continuing with seeds only: %s", e)
            return []
