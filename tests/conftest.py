"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from perp_wallet_tracker.discovery.models import Side, SizeCategory
from perp_wallet_tracker.ingestor.models import Position
from perp_wallet_tracker.storage.repos import (
    PositionSnapshotDTO,
    StoreNotFoundError,
    StoreUnavailableError,
    StoreWriteError,
    WalletDTO,
)

SAMPLE_MARKET = "0x70d95587d40a2caf56bd97485ab3eec10bee6336"
OTHER_MARKET = "0x47c031236e19d024b42f8ae6780e44a573170703"


def make_position(
    account: str,
    size_usd: str | int,
    *,
    is_long: bool = True,
    market: str = SAMPLE_MARKET,
) -> Position:
    """Build a Position the way the GraphQL parser would."""
    return Position(
        account=account.lower(),
        is_long=is_long,
        size_usd=Decimal(str(size_usd)),
        market=market,
    )


class FixedClock:
    """Manually advanced wall clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePositionSource:
    """In-memory PositionSource returning a fixed list or raising."""

    def __init__(
        self,
        positions: Sequence[Position] = (),
        *,
        error: Exception | None = None,
    ) -> None:
        self.positions = list(positions)
        self.error = error
        self.calls = 0

    async def fetch_positions(
        self, min_size_usd: Decimal | float | None = None
    ) -> list[Position]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        if min_size_usd is None:
            return list(self.positions)
        threshold = Decimal(str(min_size_usd))
        return [p for p in self.positions if p.size_usd > threshold]


class InMemoryWalletStore:
    """WalletStore fake with call recording and failure injection.

    Attributes:
        calls: (method name, first argument) per call, in order.
        fail_create_batch_calls: 1-based create_batch call numbers that raise
            StoreWriteError.
        unavailable: When True every method raises StoreUnavailableError.
    """

    def __init__(self, clock: FixedClock | None = None) -> None:
        self.clock = clock or FixedClock()
        self.wallets: dict[str, WalletDTO] = {}
        self.positions: dict[str, list[PositionSnapshotDTO]] = {}
        self.calls: list[tuple[str, object]] = []
        self.fail_create_batch_calls: set[int] = set()
        self.fail_update_category: set[str] = set()
        self.unavailable = False
        self._create_batch_count = 0

    def _record(self, name: str, arg: object = None) -> None:
        self.calls.append((name, arg))
        if self.unavailable:
            raise StoreUnavailableError(f"{name} failed: database is down")

    def calls_to(self, name: str) -> list[object]:
        return [arg for method, arg in self.calls if method == name]

    def seed(self, *addresses: str, seen_at: datetime | None = None) -> None:
        now = seen_at or self.clock()
        for address in addresses:
            self.wallets[address.lower()] = WalletDTO(
                address=address.lower(), first_seen=now, last_seen=now
            )

    async def fetch_all(self) -> list[WalletDTO]:
        self._record("fetch_all")
        return sorted(self.wallets.values(), key=lambda w: w.last_seen, reverse=True)

    async def fetch_by_address(self, address: str) -> WalletDTO | None:
        self._record("fetch_by_address", address)
        return self.wallets.get(address.lower())

    async def exists(self, address: str) -> bool:
        self._record("exists", address)
        return address.lower() in self.wallets

    async def existing_addresses(self, addresses: Sequence[str]) -> set[str]:
        self._record("existing_addresses", list(addresses))
        return {a.lower() for a in addresses if a.lower() in self.wallets}

    async def create(self, address: str) -> WalletDTO:
        self._record("create", address)
        normalized = address.lower()
        if normalized not in self.wallets:
            self.seed(normalized)
        return self.wallets[normalized]

    async def create_batch(self, addresses: Sequence[str]) -> int:
        self._record("create_batch", list(addresses))
        self._create_batch_count += 1
        if self._create_batch_count in self.fail_create_batch_calls:
            raise StoreWriteError("create_batch failed: disk full")
        created = 0
        for address in addresses:
            if address.lower() not in self.wallets:
                self.seed(address)
                created += 1
        return created

    async def update_category(
        self,
        address: str,
        category: SizeCategory,
        checked_at: datetime,
        positions: Sequence[PositionSnapshotDTO] | None = None,
    ) -> WalletDTO:
        self._record("update_category", address)
        normalized = address.lower()
        if normalized in self.fail_update_category:
            raise StoreWriteError("update_category failed: constraint violated")
        wallet = self.wallets.get(normalized)
        if wallet is None:
            raise StoreNotFoundError(normalized)
        wallet.category = category
        wallet.last_position_check = checked_at
        wallet.last_seen = self.clock()
        if positions is not None:
            self.positions[normalized] = list(positions)
        return wallet

    async def update_last_seen(self, address: str) -> None:
        await self.touch_last_seen([address])

    async def touch_last_seen(self, addresses: Sequence[str]) -> int:
        self._record("touch_last_seen", list(addresses))
        touched = 0
        for address in addresses:
            wallet = self.wallets.get(address.lower())
            if wallet is not None:
                wallet.last_seen = self.clock()
                touched += 1
        return touched

    async def delete(self, address: str) -> bool:
        self._record("delete", address)
        self.positions.pop(address.lower(), None)
        return self.wallets.pop(address.lower(), None) is not None

    async def delete_inactive(self, older_than_days: int) -> int:
        self._record("delete_inactive", older_than_days)
        if older_than_days < 1:
            raise ValueError(f"older_than_days must be at least 1, got {older_than_days}")
        cutoff = self.clock() - timedelta(days=older_than_days)
        stale = [a for a, w in self.wallets.items() if w.last_seen < cutoff]
        for address in stale:
            del self.wallets[address]
            self.positions.pop(address, None)
        return len(stale)

    async def count(self) -> int:
        self._record("count")
        return len(self.wallets)

    def _matches(
        self, wallet: WalletDTO, category: SizeCategory, side: Side | None, coin: str | None
    ) -> bool:
        if wallet.category != category:
            return False
        side_filter = side if side in (Side.LONG, Side.SHORT) else None
        if side_filter is None and not coin:
            return True
        return any(
            (side_filter is None or p.side == side_filter) and (not coin or p.coin == coin)
            for p in self.positions.get(wallet.address, [])
        )

    async def fetch_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> list[WalletDTO]:
        self._record("fetch_by_category", category)
        return [w for w in self.wallets.values() if self._matches(w, category, side, coin)]

    async def count_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> int:
        return len(await self.fetch_by_category(category, side, coin))

    async def statistics(self, coin: str | None = None) -> dict[SizeCategory, dict[Side, int]]:
        return {
            category: {
                side: await self.count_by_category(category, side, coin)
                for side in (Side.LONG, Side.SHORT)
            }
            for category in SizeCategory
        }


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store(clock: FixedClock) -> InMemoryWalletStore:
    return InMemoryWalletStore(clock)


@pytest.fixture
def sample_address() -> str:
    """Sample wallet address for testing."""
    return "0x1234567890abcdef1234567890abcdef12345678"
