"""Public entry points of the engine: replay, valuation, equity curve, dividend projections."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from portfolio_ledger.lib.config import INCEPTION_PERIOD
from portfolio_ledger.services.dividend_projection import (
    DividendProjectionService,
    MarketProjectionSummary,
    MonthlyProjection,
    ProjectionSummary,
)
from portfolio_ledger.services.equity_curve import EquityCurveBuilder, EquityPoint
from portfolio_ledger.services.ledger_store import LedgerStore
from portfolio_ledger.services.market_data_cache import MarketDataCache
from portfolio_ledger.services.replay_engine import (
    OverdraftPolicy,
    PositionReplayService,
    ReplayResult,
)
from portfolio_ledger.services.valuation import PortfolioValuation, ValuationService


class PortfolioEngine:
    """
    Stateless facade over the ledger store and the market data cache.

    Each call is an independent computation; the only shared state is the
    market data cache and its rate limiter.
    """

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        cache: Optional[MarketDataCache] = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Ledger store (default: SQLAlchemy store)
            cache: Market data cache (created lazily on first market data use)
        """
        self.store = store or LedgerStore()
        self._cache = cache

    @property
    def cache(self) -> MarketDataCache:
        """Market data cache, created on first use so ledger-only reports never build one."""
        if self._cache is None:
            self._cache = MarketDataCache()
        return self._cache

    def replay(
        self,
        account_id: Optional[str] = None,
        as_of: Optional[datetime] = None,
        overdraft_policy: OverdraftPolicy = OverdraftPolicy.RAISE,
    ) -> ReplayResult:
        """Positions and cash, optionally for one account and as of a moment."""
        return PositionReplayService(self.store).replay(
            account_id=account_id, as_of=as_of, overdraft_policy=overdraft_policy
        )

    def cash_balances(
        self, account_id: Optional[str] = None, as_of: Optional[datetime] = None
    ) -> dict[str, Decimal]:
        """
        Cash per currency (CAD and USD always present).

        Cash is a sum of net amounts, so an oversized disposal never blocks it.
        """
        result = self.replay(
            account_id=account_id, as_of=as_of, overdraft_policy=OverdraftPolicy.CLAMP
        )
        return result.cash_by_currency()

    async def valuation(self, account_id: Optional[str] = None) -> PortfolioValuation:
        """Current holdings priced at cached quotes, with CAD totals."""
        return await ValuationService(store=self.store, cache=self.cache).value(account_id)

    async def equity_curve(
        self,
        account_id: Optional[str] = None,
        period: str = INCEPTION_PERIOD,
        today: Optional[date] = None,
    ) -> list[EquityPoint]:
        """Equity curve over a period token (15d, 1m, 3m, 6m, 1y, inception)."""
        builder = EquityCurveBuilder(store=self.store, cache=self.cache)
        return await builder.build(account_id=account_id, period=period, today=today)

    def dividend_projections(
        self,
        account_id: Optional[str] = None,
        year: Optional[int] = None,
        held_only: bool = False,
        today: Optional[date] = None,
    ) -> ProjectionSummary:
        """Dividend projections with the monthly breakdown."""
        return DividendProjectionService(self.store).project(
            account_id=account_id, year=year, held_only=held_only, today=today
        )

    async def market_dividend_projections(
        self, account_id: Optional[str] = None, year: Optional[int] = None
    ) -> MarketProjectionSummary:
        """Dividend projections of current holdings at the provider's trailing rates."""
        service = DividendProjectionService(self.store, cache=self.cache)
        return await service.project_from_market(account_id=account_id, year=year)

    def dividend_history(
        self, account_id: Optional[str] = None, year: Optional[int] = None
    ) -> list[MonthlyProjection]:
        """Dividends actually received per month in a year."""
        return DividendProjectionService(self.store).history(account_id=account_id, year=year)
