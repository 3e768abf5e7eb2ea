"""Pydantic models for market data provider payloads."""

from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator

from portfolio_ledger.lib.errors import MarketDataUnavailableError


class YahooQuotePayload(BaseModel):
    """Subset of a yfinance ``Ticker.info`` mapping used for quotes."""

    symbol: str
    regular_market_price: Decimal = Field(alias="regularMarketPrice")
    regular_market_previous_close: Optional[Decimal] = Field(
        None, alias="regularMarketPreviousClose"
    )
    currency: str = "USD"
    trailing_annual_dividend_rate: Optional[Decimal] = Field(
        None, alias="trailingAnnualDividendRate"
    )
    # Fraction, e.g. 0.0374 for 3.74%
    trailing_annual_dividend_yield: Optional[Decimal] = Field(
        None, alias="trailingAnnualDividendYield"
    )

    model_config = {"populate_by_name": True}

    @field_validator("regular_market_price")
    @classmethod
    def validate_price_positive(cls, v: Decimal) -> Decimal:
        """Ensure prices are positive."""
        if v <= 0:
            raise ValueError(f"Price must be positive, got {v}")
        return v

    @field_validator("trailing_annual_dividend_rate", "trailing_annual_dividend_yield")
    @classmethod
    def drop_non_positive_dividend(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        """Yahoo reports 0 for non-payers; treat it as unknown."""
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        """Upper-case ISO code."""
        return v.upper()


class ExchangeRatePairResponse(BaseModel):
    """exchangerate-api.com ``/pair/{from}/{to}`` response."""

    result: str
    conversion_rate: Optional[Decimal] = None
    error_type: Optional[str] = Field(None, alias="error-type")

    model_config = {"populate_by_name": True}


def validate_yahoo_quote(symbol: str, info: dict[str, Any]) -> YahooQuotePayload:
    """
    Validate a yfinance info mapping.

    Args:
        symbol: Requested symbol (used when the payload omits it)
        info: Raw ``Ticker.info`` dictionary

    Returns:
        Validated payload

    Raises:
        MarketDataUnavailableError: Payload is missing a usable price
    """
    payload = {"symbol": symbol, **{k: v for k, v in info.items() if v is not None}}
    try:
        return YahooQuotePayload.model_validate(payload)
    except ValidationError as e:
        raise MarketDataUnavailableError(symbol, f"invalid quote payload: {e}") from e


def validate_exchange_rate_response(pair: str, response: dict[str, Any]) -> Decimal:
    """
    Validate an exchangerate-api.com pair response and return its rate.

    Raises:
        MarketDataUnavailableError: API reported an error or returned no rate
    """
    try:
        parsed = ExchangeRatePairResponse.model_validate(response)
    except ValidationError as e:
        raise MarketDataUnavailableError(pair, f"invalid rate payload: {e}") from e

    if parsed.result != "success" or parsed.conversion_rate is None:
        raise MarketDataUnavailableError(pair, f"API error: {parsed.error_type or 'Unknown'}")
    if parsed.conversion_rate <= 0:
        raise MarketDataUnavailableError(pair, f"non-positive rate {parsed.conversion_rate}")
    return parsed.conversion_rate
