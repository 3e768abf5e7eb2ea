"""Unit tests for YahooFinanceProvider."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from portfolio_ledger.lib.errors import MarketDataUnavailableError, RateLimitedError
from portfolio_ledger.services.market_data_provider import YahooFinanceProvider


class YFRateLimitError(Exception):
    """Stand-in named like yfinance's rate limit exception."""


@pytest.fixture
def provider():
    """Provide a provider without an exchange rate API key."""
    return YahooFinanceProvider(exchange_rate_api_key="")


@pytest.fixture
def aapl_info():
    """Provide a trimmed yfinance Ticker.info mapping."""
    return {
        "symbol": "AAPL",
        "regularMarketPrice": 227.52,
        "regularMarketPreviousClose": 225.1,
        "currency": "usd",
        "longName": "Apple Inc.",
        "dividendYield": None,
    }


@pytest.mark.unit
class TestFetchQuote:
    """Quote fetching through yfinance."""

    @pytest.mark.asyncio
    async def test_success(self, provider, aapl_info):
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.info = aapl_info
            result = await provider.fetch_quote("AAPL")

        mock_ticker.assert_called_once_with("AAPL")
        assert result.price == Decimal("227.52")
        assert result.previous_close == Decimal("225.1")
        assert result.currency == "USD"
        assert result.dividend_rate is None

    @pytest.mark.asyncio
    async def test_dividend_data_carried(self, provider):
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {
                "regularMarketPrice": 60.0,
                "currency": "CAD",
                "trailingAnnualDividendRate": 4.24,
                "trailingAnnualDividendYield": 0.0707,
            }
            result = await provider.fetch_quote("BNS.TO")

        assert result.dividend_rate == Decimal("4.24")
        assert result.dividend_yield == Decimal("0.0707")

    @pytest.mark.asyncio
    async def test_rate_limit_mapped(self, provider):
        with patch("yfinance.Ticker", side_effect=YFRateLimitError("Too Many Requests")):
            with pytest.raises(RateLimitedError):
                await provider.fetch_quote("AAPL")

    @pytest.mark.asyncio
    async def test_missing_price(self, provider):
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {"symbol": "DELISTED", "currency": "USD"}
            with pytest.raises(MarketDataUnavailableError, match="DELISTED"):
                await provider.fetch_quote("DELISTED")

    @pytest.mark.asyncio
    async def test_empty_info(self, provider):
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {}
            with pytest.raises(MarketDataUnavailableError, match="empty response"):
                await provider.fetch_quote("NOPE")

    @pytest.mark.asyncio
    async def test_other_errors_unavailable(self, provider):
        with patch("yfinance.Ticker", side_effect=ConnectionError("reset by peer")):
            with pytest.raises(MarketDataUnavailableError, match="reset by peer"):
                await provider.fetch_quote("AAPL")


@pytest.mark.unit
class TestFetchFxRate:
    """USD/CAD sources."""

    @pytest.mark.asyncio
    async def test_yahoo_cad_x(self, provider):
        with patch("yfinance.Ticker") as mock_ticker:
            mock_ticker.return_value.info = {"regularMarketPrice": 1.3641, "currency": "CAD"}
            rate = await provider.fetch_fx_rate("USDCAD")

        mock_ticker.assert_called_once_with("CAD=X")
        assert rate == Decimal("1.3641")

    @pytest.mark.asyncio
    async def test_exchange_rate_api_preferred(self):
        provider = YahooFinanceProvider(exchange_rate_api_key="secret")
        with (
            patch.object(provider, "_fetch_exchange_rate_api", new_callable=AsyncMock) as api,
            patch("yfinance.Ticker") as mock_ticker,
        ):
            api.return_value = Decimal("1.3702")
            rate = await provider.fetch_fx_rate("USDCAD")

        assert rate == Decimal("1.3702")
        mock_ticker.assert_not_called()

    @pytest.mark.asyncio
    async def test_exchange_rate_api_failure_falls_back_to_yahoo(self):
        provider = YahooFinanceProvider(exchange_rate_api_key="secret")
        with (
            patch.object(provider, "_fetch_exchange_rate_api", new_callable=AsyncMock) as api,
            patch("yfinance.Ticker") as mock_ticker,
        ):
            api.side_effect = MarketDataUnavailableError("USDCAD", "invalid-key")
            mock_ticker.return_value.info = {"regularMarketPrice": 1.36}
            rate = await provider.fetch_fx_rate("USDCAD")

        assert rate == Decimal("1.36")

    @pytest.mark.asyncio
    async def test_unsupported_pair(self, provider):
        with pytest.raises(MarketDataUnavailableError, match="unsupported"):
            await provider.fetch_fx_rate("EURGBP")

    def test_key_read_from_environment(self):
        with patch.dict("os.environ", {"EXCHANGE_RATE_API_KEY": "from-env"}):
            assert YahooFinanceProvider().exchange_rate_api_key == "from-env"
