"""Integration tests for CLI workflows."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from click.testing import CliRunner
from freezegun import freeze_time

from portfolio_ledger.cli import main
from portfolio_ledger.models import TransactionAction as A
from portfolio_ledger.services.ledger_store import LedgerStore
from portfolio_ledger.services.market_data_cache import CacheStore, CachedQuote, FxQuote
from portfolio_ledger.services.market_data_provider import ProviderQuote


@pytest.fixture
def cli_runner():
    """Provide Click test runner with a wide terminal for rich tables."""
    return CliRunner(env={"COLUMNS": "200"})


@pytest.fixture
def seeded(make_row):
    LedgerStore().append(
        [
            make_row(A.DEPOSIT, "2024-01-02", account_id="TFSA", net_amount=1000),
            make_row(A.BUY, "2024-01-03", account_id="TFSA", symbol="XEQT",
                     symbol_mapped="XEQT.TO", quantity=10, price=30, net_amount=-300),
            make_row(A.DIVIDEND, "2024-03-28", account_id="TFSA", symbol="XEQT",
                     symbol_mapped="XEQT.TO", net_amount="12.34"),
        ]
    )


@pytest.mark.integration
class TestCLIWorkflow:
    """Test suite for full CLI workflows."""

    def test_version(self, cli_runner):
        result = cli_runner.invoke(main, ["version"])

        assert result.exit_code == 0
        assert "portfolio-ledger version 0.1.0" in result.output

    def test_init_existing_database(self, cli_runner):
        result = cli_runner.invoke(main, ["init"])

        assert result.exit_code == 0
        assert "already exists" in result.output

    def test_add_and_list_transaction(self, cli_runner):
        result = cli_runner.invoke(
            main,
            [
                "transaction", "add",
                "--account", "TFSA",
                "--action", "buy",
                "--date", "2024-01-03",
                "--symbol", "XEQT",
                "--mapped-symbol", "XEQT.TO",
                "--quantity", "10",
                "--price", "30.25",
                "--net-amount", "-302.50",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "added" in result.output

        (row,) = LedgerStore().list_transactions()
        assert row.action == A.BUY
        assert row.price == Decimal("30.25")
        assert row.settlement_date == datetime(2024, 1, 3)

        listing = cli_runner.invoke(main, ["transaction", "list", "--account", "TFSA"])
        assert listing.exit_code == 0
        assert "XEQT.TO" in listing.output

    def test_add_invalid_transaction(self, cli_runner):
        result = cli_runner.invoke(
            main,
            ["transaction", "add", "--account", "TFSA", "--action", "Buy", "--date", "2024-01-03",
             "--quantity", "1"],
        )

        assert result.exit_code == 1
        assert "without symbol" in result.output
        assert LedgerStore().list_transactions() == []

    def test_add_rejects_bad_number(self, cli_runner):
        result = cli_runner.invoke(
            main,
            ["transaction", "add", "--account", "TFSA", "--action", "DEP", "--date", "2024-01-03",
             "--net-amount", "lots"],
        )

        assert result.exit_code == 2
        assert "not a number" in result.output

    def test_positions_and_cash(self, cli_runner, seeded):
        positions = cli_runner.invoke(main, ["positions"])
        cash = cli_runner.invoke(main, ["cash", "--account", "TFSA"])

        assert positions.exit_code == 0
        assert "XEQT.TO" in positions.output
        assert "300.00" in positions.output
        assert cash.exit_code == 0
        assert "712.34" in cash.output

    def test_positions_empty(self, cli_runner):
        result = cli_runner.invoke(main, ["positions"])
        assert "No open positions" in result.output

    def test_dividends(self, cli_runner, seeded):
        with freeze_time("2024-06-01"):
            result = cli_runner.invoke(main, ["dividends"])

        assert result.exit_code == 0, result.output
        assert "XEQT.TO" in result.output
        assert "irregular" in result.output

    def test_dividend_history(self, cli_runner, seeded):
        result = cli_runner.invoke(main, ["dividends", "--history", "--year", "2024"])

        assert result.exit_code == 0
        assert "2024-03" in result.output
        assert "12.34" in result.output

    def test_equity_curve(self, cli_runner, seeded):
        cache = MagicMock()
        cache.get_quotes = AsyncMock(
            return_value={"XEQT.TO": CachedQuote("XEQT.TO", Decimal("31"), Decimal("30"), "CAD")}
        )
        cache.get_fx_rate = AsyncMock(return_value=Decimal("1.35"))

        with patch("portfolio_ledger.services.portfolio_engine.MarketDataCache", return_value=cache):
            result = cli_runner.invoke(main, ["equity-curve", "--period", "15d"])

        assert result.exit_code == 0, result.output
        assert "Equity Curve (15d)" in result.output

    def test_equity_curve_rejects_unknown_period(self, cli_runner):
        result = cli_runner.invoke(main, ["equity-curve", "--period", "5y"])
        assert result.exit_code == 2

    def test_cache_show(self, cli_runner):
        CacheStore().upsert_quote(
            "AAPL",
            ProviderQuote("AAPL", Decimal("227.52"), Decimal("225.10"), "USD"),
            datetime(2024, 1, 1, 12, 0),
            3600,
        )

        result = cli_runner.invoke(main, ["cache", "show"])

        assert result.exit_code == 0
        assert "AAPL" in result.output
        assert "227.52" in result.output
        assert "expired" in result.output

    def test_cache_refresh_held_symbols(self, cli_runner, seeded):
        market_cache = MagicMock()
        market_cache.refresh_quotes = AsyncMock(
            return_value={"XEQT.TO": CachedQuote("XEQT.TO", Decimal("31.5"), Decimal("31"), "CAD")}
        )
        market_cache.get_fx_quote = AsyncMock(
            return_value=FxQuote("USDCAD", Decimal("1.35"), is_default=True)
        )

        with patch("portfolio_ledger.cli.cache.MarketDataCache", return_value=market_cache):
            result = cli_runner.invoke(main, ["cache", "refresh"])

        assert result.exit_code == 0, result.output
        market_cache.refresh_quotes.assert_awaited_once_with(("XEQT.TO",))
        assert "31.50" in result.output
        assert "(default)" in result.output

    def test_reports_survive_oversized_disposal(self, cli_runner, make_row):
        # Ledger imported partway through the account's history
        LedgerStore().append(
            [
                make_row(A.DEPOSIT, "2024-01-02", account_id="TFSA", net_amount=100),
                make_row(A.BUY, "2024-01-03", account_id="TFSA", symbol="ABC",
                         quantity=1, price=10, net_amount=-10),
                make_row(A.SELL, "2024-01-04", account_id="TFSA", symbol="ABC",
                         quantity=-5, price=12, net_amount=60),
            ]
        )

        cash = cli_runner.invoke(main, ["cash"])
        positions = cli_runner.invoke(main, ["positions"])
        strict = cli_runner.invoke(main, ["positions", "--strict"])

        assert cash.exit_code == 0, cash.output
        assert "150.00" in cash.output
        assert positions.exit_code == 0, positions.output
        assert "No open positions" in positions.output
        assert strict.exit_code == 1
        assert "ABC" in strict.output

    def test_summary(self, cli_runner, seeded):
        cache = MagicMock()
        cache.get_quotes = AsyncMock(
            return_value={
                "XEQT.TO": CachedQuote("XEQT.TO", Decimal("31"), Decimal("30"), "CAD", cached=True)
            }
        )
        cache.get_fx_quote = AsyncMock(return_value=FxQuote("USDCAD", Decimal("1.35")))

        with patch("portfolio_ledger.services.portfolio_engine.MarketDataCache", return_value=cache):
            result = cli_runner.invoke(main, ["summary"])

        assert result.exit_code == 0, result.output
        assert "XEQT.TO" in result.output
        assert "cached" in result.output
        assert "Market value: 310.00" in result.output
        assert "Cash: 712.34" in result.output
        assert "Total equity: 1,022.34" in result.output
        assert "Gain: 22.34" in result.output
        assert "Since 2024-01-02 (TFSA)" in result.output

    def test_market_dividends(self, cli_runner, seeded):
        cache = MagicMock()
        cache.get_quotes = AsyncMock(
            return_value={
                "XEQT.TO": CachedQuote(
                    "XEQT.TO", Decimal("31"), Decimal("30"), "CAD", dividend_rate=Decimal("0.80")
                )
            }
        )

        with patch("portfolio_ledger.services.portfolio_engine.MarketDataCache", return_value=cache):
            result = cli_runner.invoke(main, ["dividends", "--market", "--year", "2025"])

        assert result.exit_code == 0, result.output
        assert "Projected Dividends 2025 (market rates)" in result.output
        assert "8.00" in result.output
        assert "2025-03" in result.output
