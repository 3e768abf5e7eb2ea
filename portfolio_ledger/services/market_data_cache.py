"""TTL-backed cache of quotes and the USD/CAD rate.

Reads are served from the persistent cache while an entry is fresh
(``now < expires_at``). Misses go to the provider through the shared
rate limiter, retrying rate-limited calls with linear backoff, and the
result is upserted best-effort. Failures stop here: a quote becomes
``None`` and the FX rate falls back to ``DEFAULT_USD_CAD_RATE``.

Persistent reads and writes run in a worker thread, like provider calls.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_incrementing,
)

from portfolio_ledger.lib.config import (
    DEFAULT_USD_CAD_RATE,
    FX_CACHE_TTL,
    FX_PAIR,
    PROVIDER_REQUEST_TIMEOUT,
    QUOTE_CACHE_TTL,
    RATE_LIMIT_BACKOFF_SECONDS,
    RATE_LIMIT_MAX_ATTEMPTS,
)
from portfolio_ledger.lib.db import db_session
from portfolio_ledger.lib.errors import MarketDataError, RateLimitedError
from portfolio_ledger.lib.rate_limiter import MinIntervalRateLimiter, get_rate_limiter
from portfolio_ledger.models import FxRateCacheEntry, PriceQuoteCacheEntry
from portfolio_ledger.services.market_data_provider import ProviderQuote, YahooFinanceProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how cache rows are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass
class CachedQuote:
    """Quote handed to valuation code.

    Attributes:
        cached: Served from the cache without contacting the provider
        stale: Expired entry served because a refetch failed
        dividend_rate: Trailing annual dividend per share, when known
        dividend_yield: Trailing annual yield as a fraction, when known
    """

    symbol: str
    price: Decimal
    previous_close: Decimal
    currency: str
    cached: bool = False
    stale: bool = False
    dividend_rate: Optional[Decimal] = None
    dividend_yield: Optional[Decimal] = None

    @classmethod
    def from_entry(
        cls, entry: PriceQuoteCacheEntry, cached: bool = True, stale: bool = False
    ) -> "CachedQuote":
        """Build from a cache row."""
        return cls(
            symbol=entry.symbol,
            price=entry.price,
            previous_close=entry.previous_close or entry.price,
            currency=entry.currency,
            cached=cached,
            stale=stale,
            dividend_rate=entry.dividend_rate,
            dividend_yield=entry.dividend_yield,
        )


@dataclass
class FxQuote:
    """FX rate with provenance flags."""

    pair: str
    rate: Decimal
    cached: bool = False
    stale: bool = False
    is_default: bool = False


class CacheStore:
    """Persistent key-value access to cache rows, keyed by symbol or pair."""

    def get_quote_entry(self, symbol: str) -> Optional[PriceQuoteCacheEntry]:
        """Cache row for a symbol, expired or not."""
        with db_session() as session:
            return session.get(PriceQuoteCacheEntry, symbol)

    def get_quote_entries(self, symbols: Iterable[str]) -> dict[str, PriceQuoteCacheEntry]:
        """Cache rows for several symbols, expired or not."""
        symbols = list(symbols)
        if not symbols:
            return {}
        stmt = select(PriceQuoteCacheEntry).where(PriceQuoteCacheEntry.symbol.in_(symbols))
        with db_session() as session:
            return {e.symbol: e for e in session.execute(stmt).scalars()}

    def list_quote_entries(self) -> list[PriceQuoteCacheEntry]:
        """Every cached quote, ordered by symbol."""
        stmt = select(PriceQuoteCacheEntry).order_by(PriceQuoteCacheEntry.symbol)
        with db_session() as session:
            return list(session.execute(stmt).scalars())

    def upsert_quote(self, symbol: str, quote: ProviderQuote, fetched_at: datetime, ttl: int) -> None:
        """Insert or overwrite a quote; last writer wins."""
        entry = PriceQuoteCacheEntry(
            symbol=symbol,
            price=quote.price,
            previous_close=quote.previous_close,
            currency=quote.currency,
            dividend_rate=quote.dividend_rate,
            dividend_yield=quote.dividend_yield,
            fetched_at=fetched_at,
            expires_at=fetched_at + timedelta(seconds=ttl),
        )
        with db_session() as session:
            session.merge(entry)

    def get_fx_entry(self, pair: str) -> Optional[FxRateCacheEntry]:
        """Cache row for a currency pair, expired or not."""
        with db_session() as session:
            return session.get(FxRateCacheEntry, pair)

    def upsert_fx(self, pair: str, rate: Decimal, fetched_at: datetime, ttl: int) -> None:
        """Insert or overwrite a rate; last writer wins."""
        entry = FxRateCacheEntry(
            pair=pair,
            rate=rate,
            fetched_at=fetched_at,
            expires_at=fetched_at + timedelta(seconds=ttl),
        )
        with db_session() as session:
            session.merge(entry)


class MarketDataCache:
    """The single caller of the market data provider."""

    def __init__(
        self,
        provider: Optional[YahooFinanceProvider] = None,
        store: Optional[CacheStore] = None,
        rate_limiter: Optional[MinIntervalRateLimiter] = None,
        quote_ttl: int = QUOTE_CACHE_TTL,
        fx_ttl: int = FX_CACHE_TTL,
        request_timeout: float = PROVIDER_REQUEST_TIMEOUT,
        max_attempts: int = RATE_LIMIT_MAX_ATTEMPTS,
        backoff_seconds: float = RATE_LIMIT_BACKOFF_SECONDS,
        serve_stale: bool = False,
    ):
        """
        Initialize the cache.

        Args:
            provider: Market data provider (default: Yahoo Finance)
            store: Persistent cache store
            rate_limiter: Outbound spacing gate (default: the process-wide one)
            quote_ttl: Quote lifetime in seconds
            fx_ttl: FX rate lifetime in seconds
            request_timeout: Seconds before a pending provider call is abandoned
            max_attempts: Attempts per fetch when rate-limited
            backoff_seconds: Backoff unit; attempt n waits n x backoff_seconds
            serve_stale: On fetch failure, serve an expired entry flagged stale
                         instead of None / the default rate
        """
        self.provider = provider or YahooFinanceProvider()
        self.store = store or CacheStore()
        self.rate_limiter = rate_limiter or get_rate_limiter()
        self.quote_ttl = quote_ttl
        self.fx_ttl = fx_ttl
        self.request_timeout = request_timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.serve_stale = serve_stale

    # Provider calls

    async def _call_provider(self, subject: str, call: Callable[[], Awaitable[T]]) -> T:
        def _log_retry(retry_state: RetryCallState) -> None:
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.info(
                f"Rate limited fetching {subject}, retrying in {wait:.0f}s "
                f"(attempt {retry_state.attempt_number}/{self.max_attempts})"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.backoff_seconds, increment=self.backoff_seconds),
            retry=retry_if_exception_type(RateLimitedError),
            before_sleep=_log_retry,
            reraise=True,
        )

        async for attempt in retrying:
            with attempt:
                await self.rate_limiter.acquire()
                result = await asyncio.wait_for(call(), timeout=self.request_timeout)
        return result

    # Quotes

    async def _read_quote_entry(self, symbol: str) -> Optional[PriceQuoteCacheEntry]:
        try:
            return await asyncio.to_thread(self.store.get_quote_entry, symbol)
        except SQLAlchemyError as e:
            logger.warning(f"Quote cache read failed for {symbol}: {e}")
            return None

    async def _write_quote_entry(
        self, symbol: str, quote: ProviderQuote, fetched_at: datetime
    ) -> None:
        try:
            await asyncio.to_thread(
                self.store.upsert_quote, symbol, quote, fetched_at, self.quote_ttl
            )
        except SQLAlchemyError as e:
            logger.warning(f"Failed to cache quote for {symbol}: {e}")

    async def _fetch_quote(
        self, symbol: str, entry: Optional[PriceQuoteCacheEntry]
    ) -> Optional[CachedQuote]:
        try:
            quote = await self._call_provider(symbol, lambda: self.provider.fetch_quote(symbol))
        except (MarketDataError, asyncio.TimeoutError) as e:
            logger.warning(f"Quote unavailable for {symbol}: {str(e) or 'timed out'}")
            return self._stale_quote(entry)
        except Exception as e:
            logger.error(f"Unexpected error fetching quote for {symbol}: {e}")
            return self._stale_quote(entry)

        await self._write_quote_entry(symbol, quote, utcnow())
        return CachedQuote(
            symbol=symbol,
            price=quote.price,
            previous_close=quote.previous_close or quote.price,
            currency=quote.currency,
            cached=False,
            dividend_rate=quote.dividend_rate,
            dividend_yield=quote.dividend_yield,
        )

    def _stale_quote(self, entry: Optional[PriceQuoteCacheEntry]) -> Optional[CachedQuote]:
        if self.serve_stale and entry is not None:
            logger.info(f"Serving stale quote for {entry.symbol} fetched {entry.fetched_at}")
            return CachedQuote.from_entry(entry, cached=True, stale=True)
        return None

    async def get_quote(self, symbol: str) -> Optional[CachedQuote]:
        """
        Quote for a symbol, from cache while fresh.

        Returns:
            CachedQuote, or None when the provider cannot supply one
        """
        entry = await self._read_quote_entry(symbol)
        if entry is not None and entry.is_valid(utcnow()):
            logger.debug(f"Quote cache hit for {symbol}")
            return CachedQuote.from_entry(entry)

        logger.debug(f"Quote cache miss for {symbol}")
        return await self._fetch_quote(symbol, entry)

    async def get_quotes(self, symbols: Iterable[str]) -> dict[str, CachedQuote]:
        """
        Quotes for several symbols; symbols with no quote are absent.

        Fresh entries are read in one query; misses are fetched one after
        another through the rate limiter.
        """
        wanted = list(dict.fromkeys(s for s in symbols if s))
        try:
            entries = await asyncio.to_thread(self.store.get_quote_entries, wanted)
        except SQLAlchemyError as e:
            logger.warning(f"Quote cache read failed: {e}")
            entries = {}

        now = utcnow()
        results: dict[str, CachedQuote] = {}
        for symbol in wanted:
            entry = entries.get(symbol)
            if entry is not None and entry.is_valid(now):
                results[symbol] = CachedQuote.from_entry(entry)
                continue
            quote = await self._fetch_quote(symbol, entry)
            if quote is not None:
                results[symbol] = quote

        logger.debug(f"Resolved {len(results)}/{len(wanted)} quotes")
        return results

    async def refresh_quotes(self, symbols: Iterable[str]) -> dict[str, CachedQuote]:
        """Refetch quotes regardless of freshness (periodic refresh path)."""
        results: dict[str, CachedQuote] = {}
        for symbol in dict.fromkeys(symbols):
            quote = await self._fetch_quote(symbol, None)
            if quote is not None:
                results[symbol] = quote
            else:
                logger.warning(f"✗ Failed to refresh {symbol}")
        return results

    # FX

    async def get_fx_quote(self, pair: str = FX_PAIR) -> FxQuote:
        """
        Rate for a currency pair, from cache while fresh.

        Never raises; falls back to DEFAULT_USD_CAD_RATE flagged ``is_default``.
        """
        try:
            entry = await asyncio.to_thread(self.store.get_fx_entry, pair)
        except SQLAlchemyError as e:
            logger.warning(f"FX cache read failed for {pair}: {e}")
            entry = None

        if entry is not None and entry.is_valid(utcnow()):
            return FxQuote(pair=pair, rate=entry.rate, cached=True)

        try:
            rate = await self._call_provider(pair, lambda: self.provider.fetch_fx_rate(pair))
        except (MarketDataError, asyncio.TimeoutError) as e:
            logger.warning(f"FX rate unavailable for {pair}: {str(e) or 'timed out'}")
            return self._fallback_fx(pair, entry)
        except Exception as e:
            logger.error(f"Unexpected error fetching FX rate {pair}: {e}")
            return self._fallback_fx(pair, entry)

        try:
            await asyncio.to_thread(self.store.upsert_fx, pair, rate, utcnow(), self.fx_ttl)
        except SQLAlchemyError as e:
            logger.warning(f"Failed to cache FX rate {pair}: {e}")

        return FxQuote(pair=pair, rate=rate)

    def _fallback_fx(self, pair: str, entry: Optional[FxRateCacheEntry]) -> FxQuote:
        if self.serve_stale and entry is not None:
            return FxQuote(pair=pair, rate=entry.rate, cached=True, stale=True)
        logger.warning(f"Using default {pair} rate {DEFAULT_USD_CAD_RATE}")
        return FxQuote(pair=pair, rate=DEFAULT_USD_CAD_RATE, is_default=True)

    async def get_fx_rate(self) -> Decimal:
        """USD/CAD rate (1 USD in CAD)."""
        return (await self.get_fx_quote(FX_PAIR)).rate
