"""
Equity curve reconstruction.

Rebuilds total portfolio value (positions + cash, in CAD) at successive
bucket dates by replaying the ledger as of the end of each bucket day.
Positions are valued with the *current* cached quote, since no per-symbol
price history is kept; the curve shows how holdings evolved, priced today.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Mapping, Optional, Union

from portfolio_ledger.lib.config import (
    BASE_CURRENCY,
    DAILY_BUCKET_DAYS,
    INCEPTION_DAILY_MAX_SPAN_DAYS,
    INCEPTION_FALLBACK_DAYS,
    INCEPTION_PERIOD,
    PERIOD_DAYS,
    WEEKLY_BUCKET_DAYS,
    WEEKLY_BUCKET_PERIODS,
)
from portfolio_ledger.lib.errors import InvalidPeriodError
from portfolio_ledger.lib.money import ZERO, quantize_money
from portfolio_ledger.services.ledger_store import LedgerFilter, LedgerStore
from portfolio_ledger.services.market_data_cache import CachedQuote, MarketDataCache
from portfolio_ledger.services.net_deposits import calculate_net_deposits
from portfolio_ledger.services.replay_engine import (
    OverdraftPolicy,
    Position,
    ReplayResult,
    replay_ledger,
)

logger = logging.getLogger(__name__)

VALID_PERIODS = tuple(PERIOD_DAYS) + (INCEPTION_PERIOD,)


@dataclass
class EquityPoint:
    """Portfolio value on one bucket date, in CAD, rounded to cents."""

    date: date
    equity: Decimal
    net_deposits: Decimal


def validate_period(period: str) -> str:
    """Return the period token, or raise InvalidPeriodError."""
    if period not in VALID_PERIODS:
        raise InvalidPeriodError(period, VALID_PERIODS)
    return period


def resolve_start_date(
    period: str,
    today: date,
    first_settlement: Optional[Union[date, datetime]] = None,
) -> date:
    """
    First bucket date for a period.

    Args:
        period: One of 15d, 1m, 3m, 6m, 1y, inception
        today: Last bucket date
        first_settlement: Earliest settlement in the ledger (inception only)

    Returns:
        Start date; inception over an empty ledger starts one year back
    """
    validate_period(period)

    if period == INCEPTION_PERIOD:
        if first_settlement is None:
            return today - timedelta(days=INCEPTION_FALLBACK_DAYS)
        if isinstance(first_settlement, datetime):
            return first_settlement.date()
        return first_settlement

    return today - timedelta(days=PERIOD_DAYS[period])


def choose_interval_days(period: str, span_days: int) -> int:
    """Bucket width: weekly for 6m/1y and for inception spans over 90 days."""
    validate_period(period)

    if period in WEEKLY_BUCKET_PERIODS:
        return WEEKLY_BUCKET_DAYS
    if period == INCEPTION_PERIOD and span_days > INCEPTION_DAILY_MAX_SPAN_DAYS:
        return WEEKLY_BUCKET_DAYS
    return DAILY_BUCKET_DAYS


def bucket_dates(start: date, today: date, interval_days: int) -> list[date]:
    """Bucket dates from start, stepping by the interval, until past today."""
    dates = []
    current = start
    step = timedelta(days=interval_days)
    while current <= today:
        dates.append(current)
        current += step
    return dates


def end_of_day(d: date) -> datetime:
    return datetime.combine(d, time.max)


def is_cad_denominated(symbol: str, currency: str) -> bool:
    """TSX listings (``.TO``) trade in CAD whatever currency the row reported."""
    return currency == BASE_CURRENCY or symbol.endswith(".TO")


def value_position(position: Position, quote: Optional[CachedQuote], fx_rate: Decimal) -> Decimal:
    """
    CAD value of a position.

    Uses the quote price when available, otherwise the cost basis. Cost
    booked from a cad_equivalent is already CAD and is not converted.
    """
    cad_denominated = is_cad_denominated(position.symbol, position.currency)
    if quote is None:
        return position.cost_in_cad(fx_rate, cad_denominated)

    value = position.quantity * quote.price
    if cad_denominated:
        return value
    return value * fx_rate


def value_snapshot(
    result: ReplayResult,
    quotes: Mapping[str, CachedQuote],
    fx_rate: Decimal,
) -> Decimal:
    """Total CAD equity of a replayed snapshot."""
    equity = ZERO
    for position in result.positions:
        equity += value_position(position, quotes.get(position.symbol), fx_rate)

    for balance in result.cash:
        if balance.currency == BASE_CURRENCY:
            equity += balance.balance
        else:
            equity += balance.balance * fx_rate

    return equity


class EquityCurveBuilder:
    """Builds equity curves from the ledger and the market data cache."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        cache: Optional[MarketDataCache] = None,
    ):
        """
        Initialize the builder.

        Args:
            store: Ledger store
            cache: Market data cache for current quotes and the FX rate
        """
        self.store = store or LedgerStore()
        self.cache = cache or MarketDataCache()

    async def build(
        self,
        account_id: Optional[str] = None,
        period: str = INCEPTION_PERIOD,
        today: Optional[date] = None,
    ) -> list[EquityPoint]:
        """
        Equity curve for an account (or all accounts).

        Args:
            account_id: Restrict to one account
            period: 15d, 1m, 3m, 6m, 1y or inception
            today: Last bucket date (default: today)

        Returns:
            Points in ascending date order; empty for an empty ledger

        Raises:
            InvalidPeriodError: Unknown period token
        """
        validate_period(period)
        today = today or date.today()

        rows = self.store.list_transactions(LedgerFilter(account_id=account_id))
        if not rows:
            logger.info(f"No transactions for account={account_id or 'all'}; empty equity curve")
            return []

        start = resolve_start_date(period, today, rows[0].settlement_date)
        interval = choose_interval_days(period, (today - start).days)
        dates = bucket_dates(start, today, interval)

        symbols = sorted({row.key for row in rows if row.moves_units})
        quotes = await self.cache.get_quotes(symbols)
        fx_rate = await self.cache.get_fx_rate()

        missing = [s for s in symbols if s not in quotes]
        if missing:
            logger.warning(f"No quote for {', '.join(missing)}; valuing at cost basis")

        logger.debug(
            f"Building {period} equity curve: {len(dates)} buckets of {interval}d "
            f"over {len(rows)} transactions"
        )

        points = []
        for bucket in dates:
            as_of = end_of_day(bucket)
            snapshot = replay_ledger(rows, as_of=as_of, overdraft_policy=OverdraftPolicy.CLAMP)
            points.append(
                EquityPoint(
                    date=bucket,
                    equity=quantize_money(value_snapshot(snapshot, quotes, fx_rate)),
                    net_deposits=quantize_money(calculate_net_deposits(rows, as_of=as_of)),
                )
            )

        return points
