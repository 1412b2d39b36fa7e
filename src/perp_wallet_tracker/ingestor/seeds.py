"""Static wallet seed list.

The seed file is a JSON document of the form ``{"wallets": ["0x...", ...]}``.
A copy ships with the package and is used when no path is configured.
"""

import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from perp_wallet_tracker.ingestor.models import normalize_address

logger = logging.getLogger(__name__)


class SeedLoadError(Exception):
    """Raised when the seed file cannot be read or has the wrong shape."""


class WalletSeedFile(BaseModel):
    """Schema of the seed file."""

    wallets: list[str]


def load_seed_addresses(path: Path) -> list[str]:
    """Load seed wallet addresses from a JSON file.

    Addresses are normalized and blank entries dropped; order is preserved.

    Args:
        path: Path to the seed file.

    Returns:
        List of normalized addresses.

    Raises:
        SeedLoadError: If the file is missing, unreadable or malformed.
    """
    try:
        raw = path.read_bytes()
    except OSError as e:
        raise SeedLoadError(f"Cannot read seed file {path}: {e}") from e

    try:
        seed_file = WalletSeedFile.model_validate_json(raw)
    except ValidationError as e:
        raise SeedLoadError(f"Invalid seed file {path}: {e}") from e

    addresses = [normalize_address(a) for a in seed_file.wallets]
    addresses = [a for a in addresses if a]
    logger.debug("Loaded %d seed wallets from %s", len(addresses), path)
    return addresses
