"""Storage layer - Database schemas, repositories and the wallet store."""

from perp_wallet_tracker.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from perp_wallet_tracker.storage.models import (
    Base,
    WalletModel,
    WalletPositionModel,
)
from perp_wallet_tracker.storage.repos import (
    PositionSnapshotDTO,
    StoreError,
    StoreNotFoundError,
    StoreUnavailableError,
    StoreWriteError,
    WalletDTO,
    WalletRepository,
)
from perp_wallet_tracker.storage.store import DatabaseWalletStore

__all__ = [
    "Base",
    "DatabaseManager",
    "DatabaseWalletStore",
    "PositionSnapshotDTO",
    "StoreError",
    "StoreNotFoundError",
    "StoreUnavailableError",
    "StoreWriteError",
    "WalletDTO",
    "WalletModel",
    "WalletPositionModel",
    "WalletRepository",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
