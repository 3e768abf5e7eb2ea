"""Dividend frequency detection and forward projection.

Projects, per symbol, the dividends still to come this year from the
trailing 12 months of DIV payments. Cadence is inferred from the mean gap
between payments; the thresholds live in ``lib/config.py``.

A second projection prices current holdings at the provider's trailing
annual dividend rate and spreads it over the historical payment months.
"""

import enum
import logging
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Optional, Sequence

from dateutil.relativedelta import relativedelta  # type: ignore[import-untyped]

from portfolio_ledger.lib.config import (
    ANNUAL_GAP_DAYS,
    CONFIDENCE_BASE,
    CONFIDENCE_MAX,
    CONFIDENCE_REGULAR_BONUS,
    CONFIDENCE_YEARS_BONUS,
    DEFAULT_QUARTERLY_MONTHS,
    MIN_PAYMENTS_FOR_FREQUENCY,
    MONTHLY_GAP_DAYS,
    QUARTERLY_GAP_DAYS,
    TRAILING_PROJECTION_MONTHS,
    TYPICAL_MONTH_MIN_OCCURRENCES,
    TYPICAL_MONTH_SPARSE_HISTORY,
)
from portfolio_ledger.lib.money import ZERO, to_decimal
from portfolio_ledger.models import LedgerRow, TransactionAction
from portfolio_ledger.services.ledger_store import LedgerFilter, LedgerStore
from portfolio_ledger.services.market_data_cache import CachedQuote, MarketDataCache
from portfolio_ledger.services.replay_engine import OverdraftPolicy, PositionReplayService

logger = logging.getLogger(__name__)


class DividendFrequency(str, enum.Enum):
    """Detected payment cadence."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"
    IRREGULAR = "irregular"


PAYMENTS_PER_YEAR = {
    DividendFrequency.MONTHLY: 12,
    DividendFrequency.QUARTERLY: 4,
    DividendFrequency.ANNUAL: 1,
}


@dataclass
class DividendPayment:
    """One payment date for a symbol (same-day rows already summed)."""

    paid_on: date
    amount: Decimal


@dataclass
class DividendProjection:
    """Forward projection for one dividend-paying symbol.

    Attributes:
        symbol: Market data symbol
        currency: Payment currency
        total_past_year: Sum of payments in the trailing 12 months
        payment_count: Number of payments in the trailing 12 months
        avg_payment: total_past_year / payment_count
        frequency: Detected cadence
        projected_annual: avg_payment x payments per year
        remaining_payments: Payments still expected in the target year
        projected_remaining: avg_payment x remaining_payments
        confidence: 50-100, grows with years of history and regular cadence
        typical_months: Calendar months payments usually land in
    """

    symbol: str
    currency: str
    total_past_year: Decimal
    payment_count: int
    avg_payment: Decimal
    frequency: DividendFrequency
    projected_annual: Decimal
    remaining_payments: int
    projected_remaining: Decimal
    confidence: int
    typical_months: list[int] = field(default_factory=list)


@dataclass
class MonthlyProjection:
    """Dividend amount for one month (``YYYY-MM``) in one currency."""

    month: str
    total_amount: Decimal
    currency: str


@dataclass
class ProjectionSummary:
    """Projections for a year; totals are kept per currency."""

    year: int
    projections: list[DividendProjection] = field(default_factory=list)
    monthly_projection: list[MonthlyProjection] = field(default_factory=list)
    total_projected_annual: dict[str, Decimal] = field(default_factory=dict)
    total_projected_remaining: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class MarketDividendProjection:
    """Projection for one holding from the provider's trailing dividend data.

    Attributes:
        symbol: Market data symbol
        currency: Quote currency
        quantity: Units held, summed across accounts
        price: Current price
        market_value: quantity x price
        dividend_yield: Trailing yield as a fraction, when the provider has one
        annual_dividend_per_share: Trailing rate, else yield x price
        projected_annual: annual_dividend_per_share x quantity
        frequency: Cadence detected from the ledger's DIV history
        payment_months: Months the projected amount is spread over
    """

    symbol: str
    currency: str
    quantity: Decimal
    price: Decimal
    market_value: Decimal
    dividend_yield: Optional[Decimal]
    annual_dividend_per_share: Decimal
    projected_annual: Decimal
    frequency: DividendFrequency
    payment_months: list[int] = field(default_factory=list)

    @property
    def projected_quarterly(self) -> Decimal:
        return self.projected_annual / 4

    @property
    def projected_monthly(self) -> Decimal:
        return self.projected_annual / 12


@dataclass
class MarketProjectionSummary:
    """Market-rate projections; totals per currency, unquoted holdings listed."""

    year: int
    projections: list[MarketDividendProjection] = field(default_factory=list)
    monthly_projection: list[MonthlyProjection] = field(default_factory=list)
    total_projected_annual: dict[str, Decimal] = field(default_factory=dict)
    unquoted_symbols: list[str] = field(default_factory=list)


def collect_payments(rows: Iterable[LedgerRow]) -> dict[str, tuple[str, list[DividendPayment]]]:
    """
    Group DIV rows by symbol, summing payments that land on the same day.

    Same-day rows come from the same distribution paid into several accounts.

    Returns:
        symbol -> (currency, payments ascending by date)
    """
    by_symbol: dict[str, dict[date, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    currencies: dict[str, str] = {}

    for row in rows:
        if row.action is not TransactionAction.DIVIDEND or not row.key:
            continue
        currencies.setdefault(row.key, row.currency)
        by_symbol[row.key][row.settlement_date.date()] += abs(to_decimal(row.net_amount))

    return {
        symbol: (
            currencies[symbol],
            [DividendPayment(paid_on=d, amount=a) for d, a in sorted(amounts.items())],
        )
        for symbol, amounts in by_symbol.items()
    }


def _in_band(value: float, band: tuple[int, int]) -> bool:
    low, high = band
    return low <= value <= high


def classify_frequency(dates: Sequence[date]) -> DividendFrequency:
    """
    Classify cadence from the mean gap between consecutive payment dates.

    Args:
        dates: Payment dates (any order)

    Returns:
        DividendFrequency; fewer than two payments is always irregular
    """
    if len(dates) < MIN_PAYMENTS_FOR_FREQUENCY:
        return DividendFrequency.IRREGULAR

    ordered = sorted(dates)
    gaps = [(b - a).days for a, b in zip(ordered, ordered[1:])]
    mean_gap = sum(gaps) / len(gaps)

    if _in_band(mean_gap, ANNUAL_GAP_DAYS):
        return DividendFrequency.ANNUAL
    if _in_band(mean_gap, QUARTERLY_GAP_DAYS):
        return DividendFrequency.QUARTERLY
    if _in_band(mean_gap, MONTHLY_GAP_DAYS):
        return DividendFrequency.MONTHLY
    return DividendFrequency.IRREGULAR


def payments_per_year(frequency: DividendFrequency, trailing_count: int) -> int:
    """12/4/1 for monthly/quarterly/annual; the trailing count when irregular."""
    return PAYMENTS_PER_YEAR.get(frequency, trailing_count)


def confidence_score(distinct_years: int, frequency: DividendFrequency) -> int:
    """Confidence (0-100) from years of history and cadence regularity."""
    score = CONFIDENCE_BASE
    for min_years, bonus in CONFIDENCE_YEARS_BONUS:
        if distinct_years >= min_years:
            score += bonus
            break

    if frequency is not DividendFrequency.IRREGULAR:
        score += CONFIDENCE_REGULAR_BONUS

    return min(score, CONFIDENCE_MAX)


def typical_payment_months(payment_dates: Sequence[date]) -> list[int]:
    """
    Months (1-12) payments recur in.

    A month counts when it appears at least twice, or at least once when
    the history holds fewer than five payments.
    """
    counts = Counter(d.month for d in payment_dates)
    threshold = (
        1 if len(payment_dates) < TYPICAL_MONTH_SPARSE_HISTORY else TYPICAL_MONTH_MIN_OCCURRENCES
    )
    return sorted(month for month, count in counts.items() if count >= threshold)


def _project_symbol(
    symbol: str,
    currency: str,
    payments: list[DividendPayment],
    year: int,
    cutoff: date,
) -> Optional[DividendProjection]:
    recent = [p for p in payments if p.paid_on >= cutoff]
    if not recent:
        return None

    total_past_year = sum((p.amount for p in recent), ZERO)
    payment_count = len(recent)
    avg_payment = total_past_year / payment_count

    frequency = classify_frequency([p.paid_on for p in recent])
    per_year = payments_per_year(frequency, payment_count)
    paid_this_year = sum(1 for p in payments if p.paid_on.year == year)
    remaining = max(0, per_year - paid_this_year)

    distinct_years = len({p.paid_on.year for p in payments})

    return DividendProjection(
        symbol=symbol,
        currency=currency,
        total_past_year=total_past_year,
        payment_count=payment_count,
        avg_payment=avg_payment,
        frequency=frequency,
        projected_annual=avg_payment * per_year,
        remaining_payments=remaining,
        projected_remaining=avg_payment * remaining,
        confidence=confidence_score(distinct_years, frequency),
        typical_months=typical_payment_months([p.paid_on for p in payments]),
    )


def monthly_forecast(projections: Iterable[DividendProjection], year: int) -> list[MonthlyProjection]:
    """Place each projection's average payment into its typical months of ``year``."""
    totals: dict[tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
    for projection in projections:
        for month in projection.typical_months:
            totals[(f"{year}-{month:02d}", projection.currency)] += projection.avg_payment

    return [
        MonthlyProjection(month=month, total_amount=amount, currency=currency)
        for (month, currency), amount in sorted(totals.items())
        if amount > ZERO
    ]


def project_dividends(
    rows: Iterable[LedgerRow],
    year: Optional[int] = None,
    today: Optional[date] = None,
    held_symbols: Optional[set[str]] = None,
) -> ProjectionSummary:
    """
    Project dividends for a calendar year.

    Args:
        rows: Ledger rows; only DIV rows are used
        year: Target year (default: today's year)
        today: Reference date for the trailing 12-month window
        held_symbols: If given, only project these symbols

    Returns:
        ProjectionSummary with projections sorted by projected annual, descending
    """
    today = today or date.today()
    year = year or today.year
    cutoff = today - relativedelta(months=TRAILING_PROJECTION_MONTHS)

    projections = []
    for symbol, (currency, payments) in collect_payments(rows).items():
        if held_symbols is not None and symbol not in held_symbols:
            continue
        projection = _project_symbol(symbol, currency, payments, year, cutoff)
        if projection is not None:
            projections.append(projection)

    projections.sort(key=lambda p: (-p.projected_annual, p.symbol))

    annual: dict[str, Decimal] = defaultdict(lambda: ZERO)
    remaining: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for p in projections:
        annual[p.currency] += p.projected_annual
        remaining[p.currency] += p.projected_remaining

    return ProjectionSummary(
        year=year,
        projections=projections,
        monthly_projection=monthly_forecast(projections, year),
        total_projected_annual=dict(annual),
        total_projected_remaining=dict(remaining),
    )


def dividend_history(rows: Iterable[LedgerRow], year: int) -> list[MonthlyProjection]:
    """Dividends actually received in ``year``, per month and currency."""
    totals: dict[tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
    for row in rows:
        if row.action is not TransactionAction.DIVIDEND:
            continue
        paid_on = row.settlement_date
        if paid_on.year != year:
            continue
        totals[(f"{year}-{paid_on.month:02d}", row.currency)] += abs(to_decimal(row.net_amount))

    return [
        MonthlyProjection(month=month, total_amount=amount, currency=currency)
        for (month, currency), amount in sorted(totals.items())
    ]


def annual_dividend_per_share(quote: CachedQuote) -> Optional[Decimal]:
    """Trailing annual dividend rate, else trailing yield x price; None for non-payers."""
    if quote.dividend_rate is not None and quote.dividend_rate > ZERO:
        return quote.dividend_rate
    if quote.dividend_yield is not None and quote.dividend_yield > ZERO and quote.price > ZERO:
        return quote.dividend_yield * quote.price
    return None


def payment_schedule(payment_dates: Sequence[date]) -> tuple[DividendFrequency, list[int]]:
    """
    Cadence and payment months (1-12) from a symbol's full payment history.

    Monthly payers pay every month. Quarterly payers pay every third month
    from the earliest month seen (a single month seen means the default
    quarter ends). Annual payers pay in their most common month. Anything
    else pays in the months seen.
    """
    if not payment_dates:
        return DividendFrequency.IRREGULAR, []

    frequency = classify_frequency(payment_dates)
    counts = Counter(d.month for d in payment_dates)

    if frequency is DividendFrequency.MONTHLY:
        return frequency, list(range(1, 13))
    if frequency is DividendFrequency.QUARTERLY:
        if len(counts) < 2:
            return frequency, list(DEFAULT_QUARTERLY_MONTHS)
        first = min(counts)
        return frequency, sorted((first - 1 + 3 * k) % 12 + 1 for k in range(4))
    if frequency is DividendFrequency.ANNUAL:
        return frequency, [max(sorted(counts), key=lambda m: counts[m])]
    return frequency, sorted(counts)


def project_from_market(
    holdings: Mapping[str, Decimal],
    quotes: Mapping[str, CachedQuote],
    rows: Iterable[LedgerRow],
    year: int,
) -> MarketProjectionSummary:
    """
    Project a year of dividends from current holdings and provider dividend data.

    Args:
        holdings: symbol -> units held
        quotes: Current quotes carrying trailing dividend rate / yield
        rows: Ledger rows; DIV rows give each symbol's payment months
        year: Target year for the monthly breakdown

    Returns:
        MarketProjectionSummary; holdings without dividend data are skipped,
        holdings without a quote are listed in ``unquoted_symbols``
    """
    history = collect_payments(rows)

    projections = []
    unquoted = []
    for symbol, quantity in sorted(holdings.items()):
        quote = quotes.get(symbol)
        if quote is None:
            unquoted.append(symbol)
            continue
        per_share = annual_dividend_per_share(quote)
        if per_share is None:
            continue

        _, payments = history.get(symbol, (quote.currency, []))
        frequency, months = payment_schedule([p.paid_on for p in payments])

        projections.append(
            MarketDividendProjection(
                symbol=symbol,
                currency=quote.currency,
                quantity=quantity,
                price=quote.price,
                market_value=quote.price * quantity,
                dividend_yield=quote.dividend_yield,
                annual_dividend_per_share=per_share,
                projected_annual=per_share * quantity,
                frequency=frequency,
                payment_months=months,
            )
        )

    projections.sort(key=lambda p: (-p.projected_annual, p.symbol))

    annual: dict[str, Decimal] = defaultdict(lambda: ZERO)
    monthly: dict[tuple[str, str], Decimal] = defaultdict(lambda: ZERO)
    for p in projections:
        annual[p.currency] += p.projected_annual
        # No payment history: counted in the annual total only
        for month in p.payment_months:
            monthly[(f"{year}-{month:02d}", p.currency)] += p.projected_annual / len(
                p.payment_months
            )

    return MarketProjectionSummary(
        year=year,
        projections=projections,
        monthly_projection=[
            MonthlyProjection(month=month, total_amount=amount, currency=currency)
            for (month, currency), amount in sorted(monthly.items())
        ],
        total_projected_annual=dict(annual),
        unquoted_symbols=unquoted,
    )


class DividendProjectionService:
    """Dividend projections straight from the ledger store."""

    def __init__(
        self,
        store: Optional[LedgerStore] = None,
        cache: Optional[MarketDataCache] = None,
    ):
        self.store = store or LedgerStore()
        self._cache = cache

    @property
    def cache(self) -> MarketDataCache:
        """Market data cache, created on first market-rate projection."""
        if self._cache is None:
            self._cache = MarketDataCache()
        return self._cache

    def _dividend_rows(self, account_id: Optional[str]) -> list[LedgerRow]:
        return self.store.list_transactions(
            LedgerFilter(account_id=account_id, actions=frozenset({TransactionAction.DIVIDEND}))
        )

    def project(
        self,
        account_id: Optional[str] = None,
        year: Optional[int] = None,
        held_only: bool = False,
        today: Optional[date] = None,
    ) -> ProjectionSummary:
        """
        Project dividends for an account (or all accounts).

        Args:
            account_id: Restrict to one account
            year: Target year (default: current year)
            held_only: Skip symbols no longer held
            today: Reference date (default: today)

        Returns:
            ProjectionSummary
        """
        rows = self._dividend_rows(account_id)

        held_symbols = None
        if held_only:
            replay = PositionReplayService(self.store).replay(
                account_id=account_id, overdraft_policy=OverdraftPolicy.CLAMP
            )
            held_symbols = {p.symbol for p in replay.positions}

        summary = project_dividends(rows, year=year, today=today, held_symbols=held_symbols)
        logger.debug(
            f"Projected {len(summary.projections)} dividend symbols for {summary.year} "
            f"from {len(rows)} payments"
        )
        return summary

    async def project_from_market(
        self, account_id: Optional[str] = None, year: Optional[int] = None
    ) -> MarketProjectionSummary:
        """
        Project dividends of current holdings at the provider's trailing rates.

        Args:
            account_id: Restrict to one account
            year: Target year (default: current year)

        Returns:
            MarketProjectionSummary (empty when nothing is held)
        """
        year = year or date.today().year

        replay = PositionReplayService(self.store).replay(
            account_id=account_id, overdraft_policy=OverdraftPolicy.CLAMP
        )
        holdings: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for position in replay.positions:
            holdings[position.symbol] += position.quantity

        if not holdings:
            return MarketProjectionSummary(year=year)

        quotes = await self.cache.get_quotes(sorted(holdings))
        summary = project_from_market(holdings, quotes, self._dividend_rows(account_id), year)
        if summary.unquoted_symbols:
            logger.warning(
                f"No quote for {', '.join(summary.unquoted_symbols)}; left out of projection"
            )
        return summary

    def history(self, account_id: Optional[str] = None, year: Optional[int] = None) -> list[MonthlyProjection]:
        """Dividends received per month in a year."""
        year = year or date.today().year
        return dividend_history(self._dividend_rows(account_id), year)
