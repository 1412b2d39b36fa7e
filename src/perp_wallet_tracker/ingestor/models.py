"""Data models for the ingestor module."""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from perp_wallet_tracker.discovery.models import Side


def normalize_address(address: str) -> str:
    """Canonical form of a wallet address (hex strings vary in letter case)."""
    return address.strip().lower()


@dataclass(frozen=True)
class Position:
    """An open GMX perpetual position as returned by the GraphQL feed."""

    account: str
    is_long: bool
    size_usd: Decimal
    market: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Position":
        """Create a Position from a GraphQL `positions` record.

        `sizeInUsd` is delivered as a decimal string.

        Raises:
            KeyError: If a required field is missing.
            ValueError: If a field has the wrong type or cannot be parsed.
        """
        account = data["account"]
        if not isinstance(account, str) or not account.strip():
            raise ValueError(f"Invalid account: {account!r}")

        is_long = data["isLong"]
        if not isinstance(is_long, bool):
            raise ValueError(f"Invalid isLong: {is_long!r}")

        raw_size = data["sizeInUsd"]
        try:
            size_usd = Decimal(str(raw_size))
        except ArithmeticError as e:
            raise ValueError(f"Invalid sizeInUsd: {raw_size!r}") from e
        if not size_usd.is_finite():
            raise ValueError(f"Invalid sizeInUsd: {raw_size!r}")

        return cls(
            account=normalize_address(account),
            is_long=is_long,
            size_usd=size_usd,
            market=str(data.get("market") or ""),
        )

    @property
    def side(self) -> Side:
        return Side.from_is_long(self.is_long)

    def belongs_to(self, address: str) -> bool:
        return self.account == normalize_address(address)


@dataclass(frozen=True)
class GraphQLError:
    """A single entry of a GraphQL `errors` list."""

    message: str
    path: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Any) -> "GraphQLError":
        if not isinstance(data, dict):
            return cls(message=str(data))
        path = data.get("path") or ()
        return cls(
            message=str(data.get("message", "unknown error")),
            path=tuple(str(p) for p in path) if isinstance(path, list) else (),
        )
