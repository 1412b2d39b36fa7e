"""Tests for refresh event publishing."""

import json
from datetime import UTC, datetime
from unittest.mock import AsyncMock

from perp_wallet_tracker.events import (
    DEFAULT_EVENT_CHANNEL,
    EVENT_NAME,
    RefreshEvent,
    RefreshEventPublisher,
)

OCCURRED_AT = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)


class TestRefreshEvent:
    def test_to_dict(self) -> None:
        event = RefreshEvent(discovered=3, classified=2, occurred_at=OCCURRED_AT)

        assert event.to_dict() == {
            "event": EVENT_NAME,
            "discovered": 3,
            "classified": 2,
            "occurred_at": "2026-01-15T12:00:00+00:00",
        }

    def test_to_json(self) -> None:
        event = RefreshEvent(discovered=1, classified=0, occurred_at=OCCURRED_AT)

        assert json.loads(event.to_json())["discovered"] == 1


class TestRefreshEventPublisher:
    """Tests for RefreshEventPublisher."""

    async def test_delivers_to_sync_and_async_subscribers(self) -> None:
        publisher = RefreshEventPublisher()
        received: list[RefreshEvent] = []
        async_callback = AsyncMock()
        publisher.subscribe(received.append)
        publisher.subscribe(async_callback)
        event = RefreshEvent(discovered=2, classified=1)

        delivered = await publisher.publish(event)

        assert delivered == 2
        assert received == [event]
        async_callback.assert_awaited_once_with(event)

    async def test_unsubscribe(self) -> None:
        publisher = RefreshEventPublisher()
        received: list[RefreshEvent] = []
        unsubscribe = publisher.subscribe(received.append)
        assert publisher.subscriber_count == 1

        unsubscribe()
        unsubscribe()

        assert publisher.subscriber_count == 0
        assert await publisher.publish(RefreshEvent(discovered=1, classified=1)) == 0
        assert received == []

    async def test_failing_subscriber_does_not_block_others(self) -> None:
        publisher = RefreshEventPublisher()
        received: list[RefreshEvent] = []

        def failing(event: RefreshEvent) -> None:
            raise RuntimeError("subscriber bug")

        publisher.subscribe(failing)
        publisher.subscribe(received.append)

        delivered = await publisher.publish(RefreshEvent(discovered=1, classified=1))

        assert delivered == 1
        assert len(received) == 1

    async def test_publishes_json_to_redis(self) -> None:
        redis = AsyncMock()
        publisher = RefreshEventPublisher(redis=redis, channel="wallets:test")
        event = RefreshEvent(discovered=4, classified=3, occurred_at=OCCURRED_AT)

        delivered = await publisher.publish(event)

        assert delivered == 1
        redis.publish.assert_awaited_once_with("wallets:test", event.to_json())

    async def test_redis_failure_is_logged(self) -> None:
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        publisher = RefreshEventPublisher(redis=redis)

        assert await publisher.publish(RefreshEvent(discovered=1, classified=0)) == 0

    def test_default_channel(self) -> None:
        assert RefreshEventPublisher().channel == DEFAULT_EVENT_CHANNEL
