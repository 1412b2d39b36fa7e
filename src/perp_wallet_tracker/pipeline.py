"""Long-running refresh service for the Perp Wallet Tracker.

This module provides the RefreshService class that wires the GMX client,
wallet store, engines and event publisher together and runs refresh
cycles periodically and on demand.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from redis.asyncio import Redis

from perp_wallet_tracker.config import Settings, get_settings
from perp_wallet_tracker.discovery.classifier import ClassificationEngine
from perp_wallet_tracker.discovery.engine import DiscoveryEngine
from perp_wallet_tracker.discovery.models import RefreshResult
from perp_wallet_tracker.events import RefreshEventPublisher
from perp_wallet_tracker.ingestor.gmx_client import GmxPositionClient, RateLimiter
from perp_wallet_tracker.orchestrator import RefreshOrchestrator
from perp_wallet_tracker.storage.database import DatabaseManager
from perp_wallet_tracker.storage.store import DatabaseWalletStore

logger = logging.getLogger(__name__)


class ServiceState(str, Enum):
    """Refresh service lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class RefreshStats:
    """Statistics for the refresh service."""

    started_at: datetime | None = None
    cycles_run: int = 0
    cycles_failed: int = 0
    wallets_discovered: int = 0
    wallets_classified: int = 0
    last_result: RefreshResult | None = None
    last_cycle_time: datetime | None = None
    last_error: str | None = None


class RefreshService:
    """Runs wallet refresh cycles for the lifetime of the process.

    A cycle runs right after start (unless disabled), then every
    `refresh.interval_seconds`, and immediately whenever trigger() or
    on_foreground() is called. A failed cycle is recorded and the loop
    keeps going.

    Example:
        ```python
        from perp_wallet_tracker.config import get_settings
        from perp_wallet_tracker.pipeline import RefreshService

        service = RefreshService(get_settings())
        await service.start()
        service.trigger()
        await service.stop()
        ```
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize the service.

        Args:
            settings: Application settings. If not provided, uses get_settings().
        """
        self._settings = settings or get_settings()

        self._state = ServiceState.STOPPED
        self._stats = RefreshStats()

        # Components (initialized in start())
        self._redis: Redis | None = None
        self._db_manager: DatabaseManager | None = None
        self._gmx_client: GmxPositionClient | None = None
        self._store: DatabaseWalletStore | None = None
        self._publisher: RefreshEventPublisher | None = None
        self._orchestrator: RefreshOrchestrator | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._trigger_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> ServiceState:
        """Current service state."""
        return self._state

    @property
    def stats(self) -> RefreshStats:
        """Current service statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if service is running."""
        return self._state == ServiceState.RUNNING

    @property
    def orchestrator(self) -> RefreshOrchestrator | None:
        return self._orchestrator

    @property
    def store(self) -> DatabaseWalletStore | None:
        return self._store

    @property
    def publisher(self) -> RefreshEventPublisher | None:
        return self._publisher

    async def start(self, *, background: bool = True) -> None:
        """Start the service.

        Initializes all components, optionally runs a first cycle, and
        starts the background refresh loop.

        Args:
            background: When False only the components are initialized; no
                cycle runs until refresh_now() is called.

        Raises:
            RuntimeError: If the service is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != ServiceState.STOPPED:
            raise RuntimeError(f"Cannot start service in state {self._state}")

        self._state = ServiceState.STARTING
        self._stop_event = asyncio.Event()
        self._trigger_event = asyncio.Event()
        logger.info("Starting refresh service...")

        try:
            await self._initialize_components()
        except Exception as e:
            self._state = ServiceState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start refresh service: %s", e)
            await self._cleanup()
            raise

        self._stats.started_at = datetime.now(UTC)
        self._state = ServiceState.RUNNING

        if not background:
            logger.info("Refresh service initialized (no background loop)")
            return

        if self._settings.refresh.run_on_start:
            await self.refresh_now()

        self._loop_task = asyncio.create_task(self._run_refresh_loop())
        logger.info("Refresh service started")

    async def stop(self) -> None:
        """Stop the service gracefully and release its resources."""
        if self._state == ServiceState.STOPPED:
            return

        self._state = ServiceState.STOPPING
        logger.info("Stopping refresh service...")

        if self._stop_event:
            self._stop_event.set()

        if self._loop_task:
            self._loop_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None

        await self._cleanup()

        self._state = ServiceState.STOPPED
        logger.info("Refresh service stopped")

    def trigger(self) -> None:
        """Request a refresh cycle as soon as possible."""
        if self._trigger_event is not None:
            self._trigger_event.set()

    def on_foreground(self) -> None:
        """Hook for the host application returning to the foreground."""
        logger.debug("Foreground refresh requested")
        self.trigger()

    async def refresh_now(self) -> RefreshResult | None:
        """Run one cycle immediately, recording the outcome in stats.

        Returns:
            The cycle result, or None if the cycle failed.

        Raises:
            RuntimeError: If the service has not been started.
        """
        if self._orchestrator is None:
            raise RuntimeError("Refresh service is not started")

        self._stats.last_cycle_time = datetime.now(UTC)
        try:
            result = await self._orchestrator.run_refresh_cycle()
        except Exception as e:
            self._stats.cycles_failed += 1
            self._stats.last_error = str(e)
            logger.error("Refresh cycle failed: %s", e)
            return None

        self._stats.cycles_run += 1
        self._stats.wallets_discovered += result.discovered
        self._stats.wallets_classified += result.classified
        self._stats.last_result = result
        return result

    async def sweep_inactive(self, older_than_days: int | None = None) -> int:
        if self._orchestrator is None:
            raise RuntimeError("Refresh service is not started")
        if older_than_days is None:
            older_than_days = self._settings.discovery.inactive_days
        return await self._orchestrator.sweep_inactive(older_than_days)

    async def _initialize_components(self) -> None:
        """Initialize all service components."""
        settings = self._settings

        # Database
        logger.debug("Initializing database manager...")
        self._db_manager = DatabaseManager(settings.database.url)
        await self._db_manager.init_schema_async()
        self._store = DatabaseWalletStore(self._db_manager)

        # Redis (optional)
        if settings.redis.enabled and settings.redis.url:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)
        self._publisher = RefreshEventPublisher(
            redis=self._redis,
            channel=settings.redis.event_channel,
        )

        # GMX client
        logger.debug("Initializing GMX client...")
        self._gmx_client = GmxPositionClient(
            url=settings.gmx.graphql_url,
            timeout_seconds=settings.gmx.request_timeout_seconds,
            result_limit=settings.gmx.result_limit,
            max_retries=settings.gmx.max_retries,
            rate_limiter=RateLimiter(settings.gmx.min_request_interval_seconds),
        )

        # Engines
        discovery = DiscoveryEngine(
            self._gmx_client,
            self._store,
            seed_path=settings.discovery.resolved_seed_path,
            batch_size=settings.discovery.batch_size,
        )
        classifier = ClassificationEngine(
            self._gmx_client,
            self._store,
            max_workers=settings.refresh.classify_workers,
        )
        self._orchestrator = RefreshOrchestrator(
            self._gmx_client,
            self._store,
            discovery,
            classifier,
            publisher=self._publisher,
        )

    async def _run_refresh_loop(self) -> None:
        if not self._stop_event or not self._trigger_event:
            return

        interval = self._settings.refresh.interval_seconds
        while not self._stop_event.is_set():
            try:
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(self._trigger_event.wait(), timeout=interval)
                if self._stop_event.is_set():
                    break
                self._trigger_event.clear()
                await self.refresh_now()
            except asyncio.CancelledError:
                break

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._gmx_client:
            await self._gmx_client.aclose()
            self._gmx_client = None

        # Close database connections
        if self._db_manager:
            await self._db_manager.dispose_async()
            self._db_manager = None

        # Close Redis connection
        if self._redis:
            await self._redis.aclose()
            self._redis = None

        self._orchestrator = None
        self._store = None
        logger.debug("Resources cleaned up")

    async def run(self) -> None:
        """Start the service and run until stopped."""
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> RefreshService:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()
