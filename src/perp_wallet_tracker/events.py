"""Refresh cycle notifications.

A RefreshEvent is emitted once per refresh cycle that created wallets. It
is delivered to in-process subscribers and, when a Redis client is
configured, published as JSON on a pub/sub channel.
"""

from __future__ import annotations

import inspect
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any

from perp_wallet_tracker.discovery.models import now_utc

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_EVENT_CHANNEL = "perp_wallets:refresh"
EVENT_NAME = "wallets_discovered"

RefreshSubscriber = Callable[["RefreshEvent"], Awaitable[None] | None]


@dataclass(frozen=True)
class RefreshEvent:
    """Summary of a refresh cycle that discovered new wallets."""

    discovered: int
    classified: int
    occurred_at: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": EVENT_NAME,
            "discovered": self.discovered,
            "classified": self.classified,
            "occurred_at": self.occurred_at.isoformat(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


class RefreshEventPublisher:
    """Fans refresh events out to subscribers and an optional Redis channel.

    Delivery failures are logged and never propagate to the publisher's
    caller.

    Example:
        ```python
        publisher = RefreshEventPublisher(redis=redis)
        unsubscribe = publisher.subscribe(lambda event: print(event.discovered))
        await publisher.publish(RefreshEvent(discovered=3, classified=2))
        unsubscribe()
        ```
    """

    def __init__(
        self,
        *,
        redis: Redis | None = None,
        channel: str = DEFAULT_EVENT_CHANNEL,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._subscribers: list[RefreshSubscriber] = []

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(self, callback: RefreshSubscriber) -> Callable[[], None]:
        """Register a sync or async callback.

        Returns:
            A function that removes the callback again.
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    async def publish(self, event: RefreshEvent) -> int:
        """Deliver an event.

        Returns:
            Number of successful deliveries (subscribers plus Redis).
        """
        delivered = 0
        for callback in list(self._subscribers):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning("Refresh event subscriber %r failed: %s", callback, e)

        if self._redis is not None:
            try:
                await self._redis.publish(self._channel, event.to_json())
                delivered += 1
            except Exception as e:
                logger.warning("Failed to publish refresh event to %s: %s", self._channel, e)

        logger.info(
            "Published refresh event: discovered=%d, classified=%d (%d deliveries)",
            event.discovered,
            event.classified,
            delivered,
        )
        return delivered
