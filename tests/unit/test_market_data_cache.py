"""Unit tests for the TTL market data cache."""

import asyncio
import threading
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest
from freezegun import freeze_time
from sqlalchemy.exc import OperationalError

from portfolio_ledger.lib.config import DEFAULT_USD_CAD_RATE
from portfolio_ledger.lib.errors import MarketDataUnavailableError, RateLimitedError
from portfolio_ledger.lib.rate_limiter import MinIntervalRateLimiter
from portfolio_ledger.services.market_data_cache import CacheStore, MarketDataCache
from portfolio_ledger.services.market_data_provider import ProviderQuote


def quote(symbol: str, price: str, currency: str = "USD") -> ProviderQuote:
    return ProviderQuote(
        symbol=symbol, price=Decimal(price), previous_close=Decimal(price) - 1, currency=currency
    )


@pytest.fixture
def provider():
    """Provide a mock provider that always succeeds."""
    mock = MagicMock()
    mock.fetch_quote = AsyncMock(side_effect=lambda s: quote(s, "150.25"))
    mock.fetch_fx_rate = AsyncMock(return_value=Decimal("1.3612"))
    return mock


@pytest.fixture
def limiter():
    """Provide a rate limiter that never sleeps, with acquire() counted."""
    rl = MinIntervalRateLimiter(min_interval=0)
    rl.acquire = AsyncMock(wraps=rl.acquire)
    return rl


@pytest.fixture
def cache(provider, limiter):
    """Provide MarketDataCache with zero backoff."""
    return MarketDataCache(provider=provider, rate_limiter=limiter, backoff_seconds=0)


@pytest.mark.unit
class TestQuoteCaching:
    """Cache hits, misses and TTL expiry."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores(self, cache, provider):
        result = await cache.get_quote("AAPL")

        assert result.price == Decimal("150.25")
        assert result.previous_close == Decimal("149.25")
        assert result.cached is False
        provider.fetch_quote.assert_awaited_once_with("AAPL")

        entry = CacheStore().get_quote_entry("AAPL")
        assert entry is not None
        assert entry.price == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_hit_within_ttl(self, cache, provider):
        with freeze_time("2025-01-15 12:00:00", real_asyncio=True) as frozen:
            await cache.get_quote("AAPL")

            frozen.move_to("2025-01-15 12:59:00")
            result = await cache.get_quote("AAPL")

        assert result.cached is True
        assert provider.fetch_quote.await_count == 1

    @pytest.mark.asyncio
    async def test_refetch_after_ttl(self, cache, provider):
        with freeze_time("2025-01-15 12:00:00", real_asyncio=True) as frozen:
            await cache.get_quote("AAPL")

            frozen.move_to("2025-01-15 13:01:00")
            provider.fetch_quote.side_effect = lambda s: quote(s, "151.00")
            result = await cache.get_quote("AAPL")

        assert result.cached is False
        assert result.price == Decimal("151.00")
        assert provider.fetch_quote.await_count == 2
        assert CacheStore().get_quote_entry("AAPL").price == Decimal("151.00")

    @pytest.mark.asyncio
    async def test_missing_previous_close_falls_back_to_price(self, cache, provider):
        provider.fetch_quote.side_effect = lambda s: ProviderQuote(s, Decimal("10"), None, "CAD")

        result = await cache.get_quote("XEQT.TO")

        assert result.previous_close == Decimal("10")

    @pytest.mark.asyncio
    async def test_every_fetch_goes_through_rate_limiter(self, cache, limiter):
        await cache.get_quotes(["AAPL", "MSFT", "AAPL"])

        assert limiter.acquire.await_count == 2

    @pytest.mark.asyncio
    async def test_get_quotes_mixes_hits_and_misses(self, cache, provider):
        await cache.get_quote("AAPL")

        async def fetch(symbol):
            if symbol == "BAD":
                raise MarketDataUnavailableError(symbol, "delisted")
            return quote(symbol, "42")

        provider.fetch_quote.side_effect = fetch
        results = await cache.get_quotes(["AAPL", "MSFT", "BAD"])

        assert set(results) == {"AAPL", "MSFT"}
        assert results["AAPL"].cached is True
        assert results["MSFT"].price == Decimal("42")

    @pytest.mark.asyncio
    async def test_refresh_ignores_freshness(self, cache, provider):
        await cache.get_quote("AAPL")
        refreshed = await cache.refresh_quotes(["AAPL"])

        assert refreshed["AAPL"].cached is False
        assert provider.fetch_quote.await_count == 2


@pytest.mark.unit
class TestQuoteFailures:
    """Rate limiting, retries and degraded results."""

    @pytest.mark.asyncio
    async def test_retries_rate_limit_then_succeeds(self, cache, provider, limiter):
        provider.fetch_quote.side_effect = [
            RateLimitedError("yahoo_finance", "AAPL"),
            RateLimitedError("yahoo_finance", "AAPL"),
            quote("AAPL", "150"),
        ]

        result = await cache.get_quote("AAPL")

        assert result.price == Decimal("150")
        assert provider.fetch_quote.await_count == 3
        assert limiter.acquire.await_count == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self, cache, provider):
        provider.fetch_quote.side_effect = RateLimitedError("yahoo_finance", "AAPL")

        assert await cache.get_quote("AAPL") is None
        assert provider.fetch_quote.await_count == 3

    @pytest.mark.asyncio
    async def test_unavailable_is_not_retried(self, cache, provider):
        provider.fetch_quote.side_effect = MarketDataUnavailableError("AAPL", "no price")

        assert await cache.get_quote("AAPL") is None
        assert provider.fetch_quote.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout_returns_none(self, provider, limiter):
        async def hang(symbol):
            await asyncio.sleep(5)

        provider.fetch_quote.side_effect = hang
        cache = MarketDataCache(provider=provider, rate_limiter=limiter, request_timeout=0.05)

        assert await cache.get_quote("AAPL") is None

    @pytest.mark.asyncio
    async def test_serve_stale_on_failure(self, provider, limiter):
        cache = MarketDataCache(
            provider=provider, rate_limiter=limiter, backoff_seconds=0, serve_stale=True
        )
        with freeze_time("2025-01-15 12:00:00", real_asyncio=True) as frozen:
            await cache.get_quote("AAPL")

            frozen.move_to("2025-01-15 14:00:00")
            provider.fetch_quote.side_effect = MarketDataUnavailableError("AAPL", "down")
            result = await cache.get_quote("AAPL")

        assert result.stale is True
        assert result.price == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_expired_entry_not_served_by_default(self, cache, provider):
        with freeze_time("2025-01-15 12:00:00", real_asyncio=True) as frozen:
            await cache.get_quote("AAPL")

            frozen.move_to("2025-01-15 14:00:00")
            provider.fetch_quote.side_effect = MarketDataUnavailableError("AAPL", "down")
            result = await cache.get_quote("AAPL")

        assert result is None


@pytest.mark.unit
class TestFxRate:
    """USD/CAD rate caching and fallback."""

    @pytest.mark.asyncio
    async def test_fetch_and_cache(self, cache, provider):
        first = await cache.get_fx_quote()
        second = await cache.get_fx_quote()

        assert first.rate == Decimal("1.3612")
        assert first.cached is False
        assert second.cached is True
        provider.fetch_fx_rate.assert_awaited_once_with("USDCAD")

    @pytest.mark.asyncio
    async def test_default_rate_on_failure(self, cache, provider):
        provider.fetch_fx_rate.side_effect = MarketDataUnavailableError("USDCAD", "down")

        fx = await cache.get_fx_quote()

        assert fx.rate == DEFAULT_USD_CAD_RATE
        assert fx.is_default is True
        assert await cache.get_fx_rate() == Decimal("1.35")

    @pytest.mark.asyncio
    async def test_rate_limited_fx_retried(self, cache, provider):
        provider.fetch_fx_rate.side_effect = [
            RateLimitedError("yahoo_finance", "CAD=X"),
            Decimal("1.37"),
        ]

        assert await cache.get_fx_rate() == Decimal("1.37")
        assert provider.fetch_fx_rate.await_count == 2

    @pytest.mark.asyncio
    async def test_fx_refetched_after_ttl(self, cache, provider):
        with freeze_time("2025-01-15 12:00:00", real_asyncio=True) as frozen:
            await cache.get_fx_rate()
            frozen.move_to("2025-01-15 13:00:01")
            await cache.get_fx_rate()

        assert provider.fetch_fx_rate.await_count == 2


@pytest.mark.unit
class TestCacheStoreFailures:
    """Cache write failures never fail a read."""

    @pytest.mark.asyncio
    async def test_write_failure_still_returns_quote(self, provider, limiter):
        store = MagicMock(spec=CacheStore)
        store.get_quote_entry.return_value = None
        store.upsert_quote.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        cache = MarketDataCache(provider=provider, rate_limiter=limiter, store=store)

        result = await cache.get_quote("AAPL")

        assert result.price == Decimal("150.25")

    @pytest.mark.asyncio
    async def test_store_access_runs_off_the_event_loop_thread(self, provider, limiter):
        loop_thread = threading.get_ident()
        seen_threads = []

        def record(*args):
            seen_threads.append(threading.get_ident())
            return None

        store = MagicMock(spec=CacheStore)
        store.get_quote_entry.side_effect = record
        store.upsert_quote.side_effect = record
        store.get_fx_entry.side_effect = record
        store.upsert_fx.side_effect = record
        cache = MarketDataCache(provider=provider, rate_limiter=limiter, store=store)

        await cache.get_quote("AAPL")
        await cache.get_fx_quote()

        assert len(seen_threads) == 4
        assert loop_thread not in seen_threads


@pytest.mark.unit
class TestDividendFields:
    """Trailing dividend data travels with the quote."""

    @pytest.mark.asyncio
    async def test_dividend_fields_cached_and_served(self, cache, provider):
        provider.fetch_quote.side_effect = None
        provider.fetch_quote.return_value = ProviderQuote(
            symbol="BNS.TO",
            price=Decimal("70"),
            previous_close=Decimal("69.5"),
            currency="CAD",
            dividend_rate=Decimal("4.24"),
            dividend_yield=Decimal("0.0606"),
        )

        fetched = await cache.get_quote("BNS.TO")
        served = await cache.get_quote("BNS.TO")

        assert fetched.dividend_rate == Decimal("4.24")
        assert served.cached is True
        assert served.dividend_rate == Decimal("4.24")
        assert served.dividend_yield == Decimal("0.0606")
        provider.fetch_quote.assert_awaited_once()
