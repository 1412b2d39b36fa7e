"""Tests for the command line entry point."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from perp_wallet_tracker.__main__ import build_parser, format_statistics, main
from perp_wallet_tracker.discovery.models import RefreshResult, Side, SizeCategory


class TestParser:
    def test_default_command_is_unset(self) -> None:
        assert build_parser().parse_args([]).command is None

    def test_sweep_days(self) -> None:
        args = build_parser().parse_args(["sweep", "--days", "14"])

        assert args.command == "sweep"
        assert args.days == 14

    @pytest.mark.parametrize("days", ["0", "-1"])
    def test_sweep_days_must_be_positive(
        self, days: str, capsys: pytest.CaptureFixture[str]
    ) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sweep", "--days", days])

        assert "must be at least 1" in capsys.readouterr().err

    def test_stats_coin(self) -> None:
        args = build_parser().parse_args(["stats", "--coin", "0xabc"])

        assert args.coin == "0xabc"


class TestFormatStatistics:
    def test_rows_in_size_order(self) -> None:
        stats = {category: {Side.LONG: 0, Side.SHORT: 0} for category in SizeCategory}
        stats[SizeCategory.WHALE] = {Side.LONG: 3, Side.SHORT: 1}

        lines = format_statistics(stats).splitlines()

        assert lines[0].split() == ["category", "long", "short"]
        assert lines[1].startswith("Micro (<$1K)")
        assert lines[-1].startswith("Mega Whale ($10M+)")
        assert lines[5].split()[-2:] == ["3", "1"]


class TestMain:
    @pytest.fixture
    def service(self):
        service = MagicMock()
        service.start = AsyncMock()
        service.stop = AsyncMock()
        service.refresh_now = AsyncMock(return_value=RefreshResult(discovered=2, classified=1))
        service.sweep_inactive = AsyncMock(return_value=5)
        with patch("perp_wallet_tracker.__main__.RefreshService", return_value=service):
            yield service

    def test_refresh(self, service, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["refresh"]) == 0

        service.start.assert_awaited_once_with(background=False)
        service.stop.assert_awaited_once()
        assert "discovered=2 classified=1" in capsys.readouterr().out

    def test_refresh_failure(self, service, capsys: pytest.CaptureFixture[str]) -> None:
        service.refresh_now.return_value = None
        service.stats.last_error = "database offline"

        assert main(["refresh"]) == 1
        assert "database offline" in capsys.readouterr().err

    def test_sweep(self, service, capsys: pytest.CaptureFixture[str]) -> None:
        assert main(["sweep", "--days", "10"]) == 0

        service.sweep_inactive.assert_awaited_once_with(10)
        assert "deleted=5" in capsys.readouterr().out

    def test_stats_without_store_stops_service(self, service) -> None:
        service.store = None

        with pytest.raises(RuntimeError, match="not started"):
            main(["stats"])

        service.stop.assert_awaited_once()
