"""Domain values and results for wallet discovery and classification."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from perp_wallet_tracker.ingestor.models import Position
    from perp_wallet_tracker.storage.repos import PositionSnapshotDTO, WalletDTO


def now_utc() -> datetime:
    return datetime.now(UTC)


class SizeCategory(str, Enum):
    """Wallet size bucket by aggregate USD exposure.

    Bounds are inclusive on the lower end and exclusive on the upper end:

    - micro: <$1,000
    - small: $1,000 - $10,000
    - medium: $10,000 - $100,000
    - large: $100,000 - $1,000,000
    - whale: $1,000,000 - $10,000,000
    - mega_whale: $10,000,000+
    """

    MICRO = "micro"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"
    WHALE = "whale"
    MEGA_WHALE = "mega_whale"

    @property
    def min_usd(self) -> Decimal:
        return _CATEGORY_BOUNDS[self][0]

    @property
    def max_usd(self) -> Decimal | None:
        """Exclusive upper bound, or None for the open-ended top bucket."""
        return _CATEGORY_BOUNDS[self][1]

    @property
    def display_name(self) -> str:
        return _CATEGORY_DISPLAY_NAMES[self]

    def contains(self, exposure_usd: Decimal) -> bool:
        upper = self.max_usd
        return exposure_usd >= self.min_usd and (upper is None or exposure_usd < upper)

    @classmethod
    def from_usd(cls, exposure_usd: Decimal | int | float | str) -> SizeCategory:
        """Return the bucket for a non-negative USD exposure.

        Raises:
            ValueError: If the exposure is negative or not a number.
        """
        try:
            value = Decimal(str(exposure_usd))
        except InvalidOperation as e:
            raise ValueError(f"Exposure must be a number, got {exposure_usd!r}") from e
        if value.is_nan() or value < 0:
            raise ValueError(f"Exposure must be a non-negative number, got {exposure_usd!r}")
        for category in reversed(list(cls)):
            if value >= category.min_usd:
                return category
        return cls.MICRO

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, SizeCategory):
            return NotImplemented
        return self.min_usd < other.min_usd


_CATEGORY_BOUNDS: dict[SizeCategory, tuple[Decimal, Decimal | None]] = {
    SizeCategory.MICRO: (Decimal("0"), Decimal("1000")),
    SizeCategory.SMALL: (Decimal("1000"), Decimal("10000")),
    SizeCategory.MEDIUM: (Decimal("10000"), Decimal("100000")),
    SizeCategory.LARGE: (Decimal("100000"), Decimal("1000000")),
    SizeCategory.WHALE: (Decimal("1000000"), Decimal("10000000")),
    SizeCategory.MEGA_WHALE: (Decimal("10000000"), None),
}

_CATEGORY_DISPLAY_NAMES: dict[SizeCategory, str] = {
    SizeCategory.MICRO: "Micro (<$1K)",
    SizeCategory.SMALL: "Small ($1K-$10K)",
    SizeCategory.MEDIUM: "Medium ($10K-$100K)",
    SizeCategory.LARGE: "Large ($100K-$1M)",
    SizeCategory.WHALE: "Whale ($1M-$10M)",
    SizeCategory.MEGA_WHALE: "Mega Whale ($10M+)",
}


class Side(str, Enum):
    """Directional bias of a position or wallet."""

    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"

    @classmethod
    def from_is_long(cls, is_long: bool) -> Side:
        return cls.LONG if is_long else cls.SHORT

    @property
    def opposite(self) -> Side:
        if self is Side.LONG:
            return Side.SHORT
        if self is Side.SHORT:
            return Side.LONG
        return Side.NEUTRAL


@dataclass(frozen=True)
class WalletClassification:
    """Aggregate view of one wallet's open positions."""

    exposure_usd: Decimal
    category: SizeCategory
    side: Side
    position_count: int


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of one discovery run."""

    addresses_discovered: int = 0
    wallets_created: int = 0
    created_addresses: tuple[str, ...] = ()


@dataclass(frozen=True)
class RefreshResult:
    """Outcome of one refresh cycle (discovery then classification)."""

    discovered: int = 0
    classified: int = 0
    completed_at: datetime = field(default_factory=now_utc)


class PositionSource(Protocol):
    async def fetch_positions(
        self, min_size_usd: Decimal | float | None = None
    ) -> list[Position]:
        raise NotImplementedError


class WalletStore(Protocol):
    async def fetch_all(self) -> list[WalletDTO]:
        raise NotImplementedError

    async def fetch_by_address(self, address: str) -> WalletDTO | None:
        raise NotImplementedError

    async def exists(self, address: str) -> bool:
        raise NotImplementedError

    async def existing_addresses(self, addresses: Sequence[str]) -> set[str]:
        raise NotImplementedError

    async def create(self, address: str) -> WalletDTO:
        raise NotImplementedError

    async def create_batch(self, addresses: Sequence[str]) -> int:
        raise NotImplementedError

    async def update_category(
        self,
        address: str,
        category: SizeCategory,
        checked_at: datetime,
        positions: Sequence[PositionSnapshotDTO] | None = None,
    ) -> WalletDTO:
        raise NotImplementedError

    async def update_last_seen(self, address: str) -> None:
        raise NotImplementedError

    async def touch_last_seen(self, addresses: Sequence[str]) -> int:
        raise NotImplementedError

    async def delete(self, address: str) -> bool:
        raise NotImplementedError

    async def delete_inactive(self, older_than_days: int) -> int:
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError

    async def fetch_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> list[WalletDTO]:
        raise NotImplementedError

    async def count_by_category(
        self,
        category: SizeCategory,
        side: Side | None = None,
        coin: str | None = None,
    ) -> int:
        raise NotImplementedError

    async def statistics(self, coin: str | None = None) -> dict[SizeCategory, dict[Side, int]]:
        raise NotImplementedError
