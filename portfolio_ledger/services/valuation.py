"""
Current portfolio valuation.

Values every open position at its cached quote and converts everything to
CAD with the cached USD/CAD rate: market value, open P&L (market value
less cost basis), today's P&L (move since the previous close), cash and
the gain over net deposits.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Mapping, Optional

from portfolio_ledger.lib.config import BASE_CURRENCY
from portfolio_ledger.lib.money import ZERO
from portfolio_ledger.models import DEPOSIT_ACTIONS, WITHDRAWAL_ACTIONS
from portfolio_ledger.services.equity_curve import is_cad_denominated, value_position
from portfolio_ledger.services.ledger_store import LedgerFilter, LedgerStore
from portfolio_ledger.services.market_data_cache import CachedQuote, FxQuote, MarketDataCache
from portfolio_ledger.services.net_deposits import calculate_net_deposits
from portfolio_ledger.services.replay_engine import (
    OverdraftPolicy,
    Position,
    PositionReplayService,
)

logger = logging.getLogger(__name__)


@dataclass
class PositionValuation:
    """One position priced at its current quote.

    Attributes:
        position: The replayed position
        quote: Quote used, or None when unavailable (valued at cost basis)
        market_value: quantity x price in the quote currency; None when unpriced
        market_value_cad: CAD value (cost basis in CAD when unpriced)
        cost_cad: Cost basis in CAD
        today_pnl_cad: quantity x (price - previous close), in CAD
    """

    position: Position
    quote: Optional[CachedQuote]
    market_value: Optional[Decimal]
    market_value_cad: Decimal
    cost_cad: Decimal
    today_pnl_cad: Decimal

    @property
    def priced(self) -> bool:
        return self.quote is not None

    @property
    def open_pnl_cad(self) -> Decimal:
        return self.market_value_cad - self.cost_cad

    @property
    def open_pnl_percent(self) -> Decimal:
        if self.cost_cad <= ZERO:
            return ZERO
        return self.open_pnl_cad / self.cost_cad * 100

    @property
    def today_pnl_percent(self) -> Decimal:
        if self.quote is None or self.quote.previous_close <= ZERO:
            return ZERO
        return (self.quote.price - self.quote.previous_close) / self.quote.previous_close * 100


@dataclass
class PortfolioValuation:
    """Portfolio priced now; every total is in CAD."""

    positions: list[PositionValuation] = field(default_factory=list)
    cash: dict[str, Decimal] = field(default_factory=dict)
    fx: Optional[FxQuote] = None
    net_deposits: Decimal = ZERO
    first_settlement: Optional[datetime] = None
    accounts: list[str] = field(default_factory=list)

    @property
    def fx_rate(self) -> Decimal:
        return self.fx.rate if self.fx is not None else ZERO

    @property
    def total_market_value_cad(self) -> Decimal:
        return sum((p.market_value_cad for p in self.positions), ZERO)

    @property
    def total_cost_cad(self) -> Decimal:
        return sum((p.cost_cad for p in self.positions), ZERO)

    @property
    def total_open_pnl_cad(self) -> Decimal:
        return self.total_market_value_cad - self.total_cost_cad

    @property
    def total_today_pnl_cad(self) -> Decimal:
        return sum((p.today_pnl_cad for p in self.positions), ZERO)

    @property
    def total_cash_cad(self) -> Decimal:
        total = ZERO
        for currency, balance in self.cash.items():
            total += balance if currency == BASE_CURRENCY else balance * self.fx_rate
        return total

    @property
    def total_equity_cad(self) -> Decimal:
        return self.total_market_value_cad + self.total_cash_cad

    @property
    def total_gain_cad(self) -> Decimal:
        """Equity above what was deposited."""
        return self.total_equity_cad - self.net_deposits

    @property
    def unpriced_symbols(self) -> list[str]:
        return [p.position.symbol for p in self.positions if not p.priced]

    @property
    def stale_symbols(self) -> list[str]:
        return [p.position.symbol for p in self.positions if p.quote is not None and p.quote.stale]


def value_holding(position: Position, quote: Optional[CachedQuote], fx_rate: Decimal) -> PositionValuation:
    """Price one position; an unpriced position is carried at cost, with no P&L."""
    cad_denominated = is_cad_denominated(position.symbol, position.currency)
    cost_cad = position.cost_in_cad(fx_rate, cad_denominated)
    market_value_cad = value_position(position, quote, fx_rate)

    if quote is None:
        return PositionValuation(
            position=position,
            quote=None,
            market_value=None,
            market_value_cad=market_value_cad,
            cost_cad=cost_cad,
            today_pnl_cad=ZERO,
        )

    today_pnl = position.quantity * (quote.price - quote.previous_close)
    return PositionValuation(
        position=position,
        quote=quote,
        market_value=position.quantity * quote.price,
        market_value_cad=market_value_cad,
        cost_cad=cost_cad,
        today_pnl_cad=today_pnl if cad_denominated else today_pnl * fx_rate,
    )


def value_portfolio(
    positions: Iterable[Position],
    cash: Mapping[str, Decimal],
    quotes: Mapping[str, CachedQuote],
    fx: FxQuote,
    net_deposits: Decimal = ZERO,
) -> PortfolioValuation:
    """
    Value positions and cash at current quotes.

    Args:
        positions: Open positions
        cash: Cash per currency
        quotes: Quotes keyed by symbol; missing symbols are valued at cost
        fx: USD/CAD rate used for every non-CAD amount
        net_deposits: CAD deposited less withdrawn

    Returns:
        PortfolioValuation with positions sorted by CAD market value, descending
    """
    valued = [value_holding(p, quotes.get(p.symbol), fx.rate) for p in positions]
    valued.sort(key=lambda v: (-v.market_value_cad, v.position.symbol))
    return PortfolioValuation(
        positions=valued,
        cash=dict(cash),
        fx=fx,
        net_deposits=net_deposits,
    )


class ValuationService:
    """Values the ledger's current state against the market data cache."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        cache: Optional[MarketDataCache] = None,
    ):
        """
        Initialize the service.

        Args:
            store: Ledger store
            cache: Market data cache for quotes and the FX rate
        """
        self.store = store or LedgerStore()
        self.cache = cache or MarketDataCache()

    async def value(self, account_id: Optional[str] = None) -> PortfolioValuation:
        """
        Current valuation of an account (or all accounts).

        Oversized disposals close the position rather than failing, so a
        partial ledger still values.

        Returns:
            PortfolioValuation; empty positions and zero cash for an empty ledger
        """
        replay = PositionReplayService(self.store).replay(
            account_id=account_id, overdraft_policy=OverdraftPolicy.CLAMP
        )
        symbols = sorted({p.symbol for p in replay.positions})

        quotes = await self.cache.get_quotes(symbols) if symbols else {}
        fx = await self.cache.get_fx_quote()

        flows = self.store.list_transactions(
            LedgerFilter(account_id=account_id, actions=DEPOSIT_ACTIONS | WITHDRAWAL_ACTIONS)
        )

        valuation = value_portfolio(
            replay.positions,
            replay.cash_by_currency(),
            quotes,
            fx,
            net_deposits=calculate_net_deposits(flows),
        )
        valuation.first_settlement = self.store.first_settlement_date(account_id)
        valuation.accounts = [account_id] if account_id else self.store.account_ids()

        if valuation.unpriced_symbols:
            logger.warning(
                f"No quote for {', '.join(valuation.unpriced_symbols)}; valued at cost basis"
            )
        return valuation
