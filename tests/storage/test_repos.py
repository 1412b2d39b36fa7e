"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from perp_wallet_tracker.discovery.models import Side, SizeCategory
from perp_wallet_tracker.storage.models import Base
from perp_wallet_tracker.storage.repos import (
    PositionSnapshotDTO,
    StoreNotFoundError,
    WalletDTO,
    WalletRepository,
)

SEEN_AT = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
MARKET_A = "0x70d95587d40a2caf56bd97485ab3eec10bee6336"
MARKET_B = "0x47c031236e19d024b42f8ae6780e44a573170703"

# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def repo(async_session: AsyncSession) -> WalletRepository:
    return WalletRepository(async_session)


def snapshot(
    address: str,
    coin: str,
    side: Side,
    size: str,
    checked_at: datetime = SEEN_AT,
) -> PositionSnapshotDTO:
    return PositionSnapshotDTO(
        wallet_address=address,
        coin=coin,
        side=side,
        size=Decimal(size),
        last_checked=checked_at,
    )


# ============================================================================
# DTO Tests
# ============================================================================


class TestWalletDTO:
    def test_is_classified(self) -> None:
        wallet = WalletDTO(address="0xaa", first_seen=SEEN_AT, last_seen=SEEN_AT)
        assert wallet.is_classified is False

        wallet.category = SizeCategory.SMALL
        assert wallet.is_classified is True


# ============================================================================
# WalletRepository Tests
# ============================================================================


class TestWalletRepositoryInsert:
    """Tests for inserting wallets."""

    async def test_insert_and_get(self, repo: WalletRepository) -> None:
        created = await repo.insert("0xAbC", seen_at=SEEN_AT)

        assert created.address == "0xabc"
        assert created.category is None
        assert created.last_position_check is None

        fetched = await repo.get_by_address("0xABC")
        assert fetched is not None
        assert fetched.first_seen == SEEN_AT
        assert fetched.last_seen == SEEN_AT

    async def test_get_nonexistent(self, repo: WalletRepository) -> None:
        assert await repo.get_by_address("0xnotfound") is None

    async def test_insert_duplicate_raises(self, repo: WalletRepository) -> None:
        await repo.insert("0xabc", seen_at=SEEN_AT)

        with pytest.raises(IntegrityError):
            await repo.insert("0xABC", seen_at=SEEN_AT)

    async def test_insert_many_skips_existing_and_duplicates(self, repo: WalletRepository) -> None:
        await repo.insert("0xaa", seen_at=SEEN_AT)

        created = await repo.insert_many(["0xAA", "0xbb", "0xBB", "0xcc"], seen_at=SEEN_AT)

        assert created == ["0xbb", "0xcc"]
        assert await repo.count() == 3

    async def test_insert_many_all_existing(self, repo: WalletRepository) -> None:
        await repo.insert_many(["0xaa", "0xbb"], seen_at=SEEN_AT)

        assert await repo.insert_many(["0xbb", "0xaa"], seen_at=SEEN_AT) == []

    async def test_get_existing_addresses(self, repo: WalletRepository) -> None:
        await repo.insert_many(["0xaa", "0xbb"], seen_at=SEEN_AT)

        existing = await repo.get_existing_addresses(["0xAA", "0xcc"])

        assert existing == {"0xaa"}
        assert await repo.get_existing_addresses([]) == set()


class TestWalletRepositoryUpdates:
    """Tests for category, position and last_seen updates."""

    async def test_update_category(self, repo: WalletRepository) -> None:
        await repo.insert("0xaa", seen_at=SEEN_AT)
        later = SEEN_AT + timedelta(hours=1)

        updated = await repo.update_category(
            "0xAA", SizeCategory.WHALE, checked_at=later, seen_at=later
        )

        assert updated.category is SizeCategory.WHALE
        assert updated.last_position_check == later
        assert updated.last_seen == later
        assert updated.first_seen == SEEN_AT

    async def test_update_category_not_found(self, repo: WalletRepository) -> None:
        with pytest.raises(StoreNotFoundError) as exc_info:
            await repo.update_category(
                "0xMissing", SizeCategory.SMALL, checked_at=SEEN_AT, seen_at=SEEN_AT
            )
        assert exc_info.value.address == "0xmissing"

    async def test_update_category_replaces_positions(self, repo: WalletRepository) -> None:
        await repo.insert("0xaa", seen_at=SEEN_AT)
        await repo.update_category(
            "0xaa",
            SizeCategory.SMALL,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[
                snapshot("0xaa", MARKET_A, Side.LONG, "1500"),
                snapshot("0xaa", MARKET_B, Side.SHORT, "700"),
            ],
        )

        await repo.update_category(
            "0xaa",
            SizeCategory.MEDIUM,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[snapshot("0xaa", MARKET_A, Side.LONG, "25000")],
        )

        positions = await repo.list_positions("0xAA")
        assert len(positions) == 1
        assert positions[0].coin == MARKET_A
        assert positions[0].side is Side.LONG
        assert positions[0].size == Decimal("25000")

    async def test_update_category_without_positions_keeps_rows(
        self, repo: WalletRepository
    ) -> None:
        await repo.insert("0xaa", seen_at=SEEN_AT)
        await repo.update_category(
            "0xaa",
            SizeCategory.SMALL,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[snapshot("0xaa", MARKET_A, Side.LONG, "1500")],
        )

        await repo.update_category(
            "0xaa", SizeCategory.MEDIUM, checked_at=SEEN_AT, seen_at=SEEN_AT
        )

        assert len(await repo.list_positions("0xaa")) == 1

    async def test_touch_last_seen(self, repo: WalletRepository) -> None:
        await repo.insert_many(["0xaa", "0xbb"], seen_at=SEEN_AT)
        later = SEEN_AT + timedelta(days=2)

        touched = await repo.touch_last_seen(["0xAA", "0xzz"], seen_at=later)

        assert touched == 1
        wallet = await repo.get_by_address("0xaa")
        assert wallet is not None
        assert wallet.last_seen == later
        assert await repo.touch_last_seen([], seen_at=later) == 0


class TestWalletRepositoryDelete:
    async def test_delete(self, repo: WalletRepository) -> None:
        await repo.insert("0xaa", seen_at=SEEN_AT)

        assert await repo.delete("0xAA") is True
        assert await repo.delete("0xaa") is False
        assert await repo.count() == 0

    async def test_delete_seen_before(self, repo: WalletRepository) -> None:
        await repo.insert("0xold", seen_at=SEEN_AT - timedelta(days=40))
        await repo.insert("0xnew", seen_at=SEEN_AT)

        deleted = await repo.delete_seen_before(SEEN_AT - timedelta(days=30))

        assert deleted == 1
        assert [w.address for w in await repo.list_all()] == ["0xnew"]


class TestWalletRepositoryQueries:
    """Tests for category queries."""

    @pytest.fixture
    async def classified(self, repo: WalletRepository) -> WalletRepository:
        await repo.insert_many(["0xaa", "0xbb", "0xcc", "0xdd"], seen_at=SEEN_AT)
        await repo.update_category(
            "0xaa",
            SizeCategory.WHALE,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[snapshot("0xaa", MARKET_A, Side.LONG, "2000000")],
        )
        await repo.update_category(
            "0xbb",
            SizeCategory.WHALE,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT + timedelta(minutes=5),
            positions=[snapshot("0xbb", MARKET_B, Side.SHORT, "3000000")],
        )
        await repo.update_category(
            "0xcc",
            SizeCategory.WHALE,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[
                snapshot("0xcc", MARKET_A, Side.LONG, "600000"),
                snapshot("0xcc", MARKET_A, Side.SHORT, "600000"),
            ],
        )
        await repo.update_category(
            "0xdd",
            SizeCategory.SMALL,
            checked_at=SEEN_AT,
            seen_at=SEEN_AT,
            positions=[snapshot("0xdd", MARKET_A, Side.LONG, "5000")],
        )
        return repo

    async def test_list_by_category_orders_by_last_seen(self, classified: WalletRepository) -> None:
        wallets = await classified.list_by_category(SizeCategory.WHALE)

        assert [w.address for w in wallets] == ["0xbb", "0xaa", "0xcc"]

    async def test_side_filter(self, classified: WalletRepository) -> None:
        longs = await classified.list_by_category(SizeCategory.WHALE, side=Side.LONG)
        shorts = await classified.list_by_category(SizeCategory.WHALE, side=Side.SHORT)

        assert {w.address for w in longs} == {"0xaa", "0xcc"}
        assert {w.address for w in shorts} == {"0xbb", "0xcc"}

    async def test_neutral_side_is_no_filter(self, classified: WalletRepository) -> None:
        assert await classified.count_by_category(SizeCategory.WHALE, side=Side.NEUTRAL) == 3

    async def test_coin_filter(self, classified: WalletRepository) -> None:
        wallets = await classified.list_by_category(SizeCategory.WHALE, coin=MARKET_B)

        assert [w.address for w in wallets] == ["0xbb"]
        assert (
            await classified.count_by_category(SizeCategory.WHALE, side=Side.LONG, coin=MARKET_B)
            == 0
        )

    async def test_unclassified_wallets_excluded(self, classified: WalletRepository) -> None:
        assert await classified.count() == 4
        assert await classified.count_by_category(SizeCategory.MICRO) == 0
        assert await classified.count_by_category(SizeCategory.SMALL) == 1
