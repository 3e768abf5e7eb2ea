"""External market data sources: Yahoo Finance quotes and the USD/CAD rate.

Providers make exactly one outbound attempt per call. Spacing between
calls and retrying rate-limited calls is the cache's job.
"""

import asyncio
import logging
import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import yfinance as yf

from portfolio_ledger.lib.api_client import APIClient
from portfolio_ledger.lib.api_models import validate_exchange_rate_response, validate_yahoo_quote
from portfolio_ledger.lib.errors import (
    MarketDataError,
    MarketDataUnavailableError,
    RateLimitedError,
)

logger = logging.getLogger(__name__)

# Yahoo quotes USD/CAD as "CAD=X": 1 USD = X CAD
YAHOO_FX_SYMBOLS = {"USDCAD": "CAD=X"}

EXCHANGE_RATE_API_URL = "https://v6.exchangerate-api.com/v6"


@dataclass
class ProviderQuote:
    """Quote as returned by a provider."""

    symbol: str
    price: Decimal
    previous_close: Optional[Decimal]
    currency: str
    dividend_rate: Optional[Decimal] = None  # trailing annual dividend per share
    dividend_yield: Optional[Decimal] = None  # trailing annual yield, as a fraction


def _is_rate_limit(error: Exception) -> bool:
    return type(error).__name__ == "YFRateLimitError" or "Too Many Requests" in str(error)


class YahooFinanceProvider:
    """Quotes and FX from Yahoo Finance via yfinance.

    An exchangerate-api.com key (``EXCHANGE_RATE_API_KEY``) makes it the
    first FX source, with Yahoo as fallback.
    """

    name = "yahoo_finance"

    def __init__(self, exchange_rate_api_key: Optional[str] = None):
        """
        Initialize provider.

        Args:
            exchange_rate_api_key: exchangerate-api.com key (default: from environment)
        """
        if exchange_rate_api_key is None:
            exchange_rate_api_key = os.getenv("EXCHANGE_RATE_API_KEY", "")
        self.exchange_rate_api_key = exchange_rate_api_key

    async def fetch_quote(self, symbol: str) -> ProviderQuote:
        """
        Fetch the current quote for a symbol.

        Raises:
            RateLimitedError: Yahoo throttled the request
            MarketDataUnavailableError: No usable quote
        """
        info = await self._fetch_info(symbol)
        payload = validate_yahoo_quote(symbol, info)
        return ProviderQuote(
            symbol=payload.symbol,
            price=payload.regular_market_price,
            previous_close=payload.regular_market_previous_close,
            currency=payload.currency,
            dividend_rate=payload.trailing_annual_dividend_rate,
            dividend_yield=payload.trailing_annual_dividend_yield,
        )

    async def fetch_fx_rate(self, pair: str) -> Decimal:
        """
        Fetch one FX pair's rate (units of quote currency per base unit).

        Raises:
            RateLimitedError: Every source that answered was throttling
            MarketDataUnavailableError: No source produced a rate
        """
        if self.exchange_rate_api_key:
            try:
                rate = await self._fetch_exchange_rate_api(pair)
                logger.info(f"Fetched {pair} from exchangerate-api.com: {rate}")
                return rate
            except MarketDataError as e:
                logger.warning(f"exchangerate-api.com failed for {pair}: {e}")

        yahoo_symbol = YAHOO_FX_SYMBOLS.get(pair)
        if yahoo_symbol is None:
            raise MarketDataUnavailableError(pair, "unsupported currency pair")

        info = await self._fetch_info(yahoo_symbol)
        payload = validate_yahoo_quote(yahoo_symbol, info)
        logger.info(f"Fetched {pair} from Yahoo Finance: {payload.regular_market_price}")
        return payload.regular_market_price

    async def _fetch_info(self, symbol: str) -> dict[str, Any]:
        try:
            info = await asyncio.to_thread(lambda: yf.Ticker(symbol).info)
        except Exception as e:
            if _is_rate_limit(e):
                raise RateLimitedError(self.name, symbol) from e
            raise MarketDataUnavailableError(symbol, str(e)) from e

        if not info:
            raise MarketDataUnavailableError(symbol, "empty response")
        return dict(info)

    async def _fetch_exchange_rate_api(self, pair: str) -> Decimal:
        base, quote = pair[:3], pair[3:]
        async with APIClient(EXCHANGE_RATE_API_URL, provider_name="exchangerate-api") as client:
            response = await client.get(f"/{self.exchange_rate_api_key}/pair/{base}/{quote}")
        return validate_exchange_rate_response(pair, response)
