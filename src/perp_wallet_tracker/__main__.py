"""Command line entry point.

Usage:
    python -m perp_wallet_tracker run            # periodic refresh until interrupted
    python -m perp_wallet_tracker refresh        # one refresh cycle
    python -m perp_wallet_tracker sweep --days 30
    python -m perp_wallet_tracker stats --coin 0x70d9...
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import sys
from collections.abc import Sequence

from perp_wallet_tracker.config import Settings, get_settings
from perp_wallet_tracker.discovery.models import Side, SizeCategory
from perp_wallet_tracker.pipeline import RefreshService

logger = logging.getLogger("perp_wallet_tracker")


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="perp-wallet-tracker",
        description="Discover and classify GMX perpetual traders by position size.",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run refresh cycles periodically until interrupted")
    sub.add_parser("refresh", help="Run a single refresh cycle and print the counts")

    sweep = sub.add_parser("sweep", help="Delete wallets not seen recently")
    sweep.add_argument(
        "--days",
        type=positive_int,
        default=None,
        help="Inactivity window in days (default: DISCOVERY_INACTIVE_DAYS)",
    )

    stats = sub.add_parser("stats", help="Print wallet counts per size category and side")
    stats.add_argument("--coin", default=None, help="Only count wallets with a position in this market")
    return parser


def setup_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def format_statistics(stats: dict[SizeCategory, dict[Side, int]]) -> str:
    lines = [f"{'category':<22} {'long':>8} {'short':>8}"]
    for category in sorted(stats):
        counts = stats[category]
        lines.append(
            f"{category.display_name:<22} {counts.get(Side.LONG, 0):>8} {counts.get(Side.SHORT, 0):>8}"
        )
    return "\n".join(lines)


async def _run(settings: Settings) -> int:
    service = RefreshService(settings)
    await service.run()
    return 0


async def _refresh(settings: Settings) -> int:
    service = RefreshService(settings)
    await service.start(background=False)
    try:
        result = await service.refresh_now()
    finally:
        await service.stop()
    if result is None:
        print(f"Refresh failed: {service.stats.last_error}", file=sys.stderr)
        return 1
    print(f"discovered={result.discovered} classified={result.classified}")
    return 0


async def _sweep(settings: Settings, days: int | None) -> int:
    service = RefreshService(settings)
    await service.start(background=False)
    try:
        deleted = await service.sweep_inactive(days)
    finally:
        await service.stop()
    print(f"deleted={deleted}")
    return 0


async def _stats(settings: Settings, coin: str | None) -> int:
    service = RefreshService(settings)
    await service.start(background=False)
    try:
        if service.store is None:
            raise RuntimeError("Refresh service is not started")
        stats = await service.store.statistics(coin)
        total = await service.store.count()
    finally:
        await service.stop()
    print(format_statistics(stats))
    print(f"total wallets: {total}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    setup_logging(settings)
    logger.debug("Settings: %s", settings.redacted_summary())

    command = args.command or "run"
    if command == "run":
        coro = _run(settings)
    elif command == "refresh":
        coro = _refresh(settings)
    elif command == "sweep":
        coro = _sweep(settings, args.days)
    else:
        coro = _stats(settings, args.coin)

    with contextlib.suppress(KeyboardInterrupt):
        return asyncio.run(coro)
    return 130


if __name__ == "__main__":
    sys.exit(main())
