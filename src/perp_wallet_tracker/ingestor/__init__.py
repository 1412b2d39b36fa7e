"""Data ingestion layer - GMX position feed and wallet seed list."""

from perp_wallet_tracker.ingestor.gmx_client import (
    GmxPositionClient,
    RateLimiter,
    SourceError,
    SourceMalformedError,
    SourceNetworkError,
    SourceRejectedError,
)
from perp_wallet_tracker.ingestor.models import (
    GraphQLError,
    Position,
    normalize_address,
)
from perp_wallet_tracker.ingestor.seeds import SeedLoadError, load_seed_addresses

__all__ = [
    "GmxPositionClient",
    "GraphQLError",
    "Position",
    "RateLimiter",
    "SeedLoadError",
    "SourceError",
    "SourceMalformedError",
    "SourceNetworkError",
    "SourceRejectedError",
    "load_seed_addresses",
    "normalize_address",
]
