"""Unit tests for provider payload validation."""

from decimal import Decimal

import pytest

from portfolio_ledger.lib.api_models import (
    YahooQuotePayload,
    validate_exchange_rate_response,
    validate_yahoo_quote,
)
from portfolio_ledger.lib.errors import MarketDataUnavailableError


@pytest.mark.unit
class TestYahooQuotePayload:
    """Test suite for YahooQuotePayload."""

    def test_aliases_and_defaults(self):
        payload = YahooQuotePayload.model_validate({"symbol": "SHOP.TO", "regularMarketPrice": 98.4})

        assert payload.regular_market_price == Decimal("98.4")
        assert payload.regular_market_previous_close is None
        assert payload.currency == "USD"

    def test_populate_by_name(self):
        payload = YahooQuotePayload(symbol="X", regular_market_price=Decimal("1"), currency="cad")
        assert payload.currency == "CAD"

    def test_non_positive_price_rejected(self):
        with pytest.raises(MarketDataUnavailableError, match="invalid quote payload"):
            validate_yahoo_quote("BAD", {"regularMarketPrice": 0})

    def test_none_values_ignored(self):
        payload = validate_yahoo_quote(
            "AAPL", {"regularMarketPrice": 10, "currency": None, "regularMarketPreviousClose": None}
        )
        assert payload.currency == "USD"
        assert payload.symbol == "AAPL"

    def test_trailing_dividend_fields(self):
        payload = validate_yahoo_quote(
            "BNS.TO",
            {
                "regularMarketPrice": 60,
                "trailingAnnualDividendRate": 4.24,
                "trailingAnnualDividendYield": 0.0707,
            },
        )
        assert payload.trailing_annual_dividend_rate == Decimal("4.24")
        assert payload.trailing_annual_dividend_yield == Decimal("0.0707")

    def test_zero_dividend_means_unknown(self):
        payload = validate_yahoo_quote(
            "BRK-B", {"regularMarketPrice": 400, "trailingAnnualDividendRate": 0}
        )
        assert payload.trailing_annual_dividend_rate is None
        assert payload.trailing_annual_dividend_yield is None


@pytest.mark.unit
class TestExchangeRateResponse:
    """Test suite for exchangerate-api.com responses."""

    def test_success(self):
        rate = validate_exchange_rate_response(
            "USDCAD", {"result": "success", "conversion_rate": 1.3655}
        )
        assert rate == Decimal("1.3655")

    def test_error_type_reported(self):
        with pytest.raises(MarketDataUnavailableError, match="invalid-key"):
            validate_exchange_rate_response("USDCAD", {"result": "error", "error-type": "invalid-key"})

    def test_non_positive_rate(self):
        with pytest.raises(MarketDataUnavailableError, match="non-positive"):
            validate_exchange_rate_response("USDCAD", {"result": "success", "conversion_rate": 0})
