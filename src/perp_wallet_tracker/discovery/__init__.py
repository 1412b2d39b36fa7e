"""Discovery layer - Wallet discovery, classification and domain values."""

from perp_wallet_tracker.discovery.models import (
    DiscoveryResult,
    PositionSource,
    RefreshResult,
    Side,
    SizeCategory,
    WalletClassification,
    WalletStore,
)

__all__ = [
    "DiscoveryResult",
    "PositionSource",
    "RefreshResult",
    "Side",
    "SizeCategory",
    "WalletClassification",
    "WalletStore",
]
