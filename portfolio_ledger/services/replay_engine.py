"""Position and cash replay over the transaction ledger.

Replays ledger rows in settlement-date order, applying one mutation rule per
action, and returns the resulting positions (average-cost accounting) and
cash balances. ``replay_ledger`` is a pure function; ``PositionReplayService``
wires it to the ledger store.

Per-action rules, on a running ``quantity`` / ``total_cost`` per
account and symbol:

- Buy: add units; cost += |qty x price| + |commission|
- REI: add units; cost += |qty x price|, or |net_amount| when price is missing
- CON/TFI/DEP: add units; cost += cad_equivalent, else |net_amount|
  (a cad_equivalent is already CAD and is tracked as ``cost_in_base``)
- Sell/WDR/TFO: remove units at the current average cost
- DIS: add units at no cost
- everything else: cash only

Every row with a non-zero ``net_amount`` moves cash in its currency.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from portfolio_ledger.lib.config import POSITION_EPSILON
from portfolio_ledger.lib.errors import OverdraftPositionError
from portfolio_ledger.lib.money import ZERO, to_decimal
from portfolio_ledger.models import (
    DEPOSIT_ACTIONS,
    DISPOSAL_ACTIONS,
    LedgerRow,
    TransactionAction,
)
from portfolio_ledger.services.ledger_store import LedgerFilter, LedgerStore

logger = logging.getLogger(__name__)


class OverdraftPolicy(str, enum.Enum):
    """What to do when a disposal removes more units than are held."""

    RAISE = "raise"  # OverdraftPositionError
    CLAMP = "clamp"  # close the position at zero and log a warning


@dataclass
class Position:
    """Open position in one symbol.

    Attributes:
        symbol: Market data symbol (mapped symbol when available)
        quantity: Units held, always > POSITION_EPSILON
        avg_cost: total_cost / quantity
        total_cost: Cost basis of the units held
        currency: Currency of the first row that opened the position
        account_id: Owning account (None once aggregated across accounts)
        cost_in_base: Part of total_cost already in CAD (in-kind deposits
            booked at their cad_equivalent); the rest is in ``currency``
    """

    symbol: str
    quantity: Decimal
    avg_cost: Decimal
    total_cost: Decimal
    currency: str
    account_id: Optional[str]
    cost_in_base: Decimal = ZERO

    def cost_in_cad(self, fx_rate: Decimal, cad_denominated: bool) -> Decimal:
        """Cost basis in CAD, converting only the part held in ``currency``."""
        if cad_denominated:
            return self.total_cost
        return (self.total_cost - self.cost_in_base) * fx_rate + self.cost_in_base


@dataclass
class CashBalance:
    """Sum of net amounts in one currency (per account when account_id is set)."""

    currency: str
    balance: Decimal
    account_id: Optional[str] = None


@dataclass
class ReplayResult:
    """Positions and cash as of a point in time."""

    positions: list[Position] = field(default_factory=list)
    cash: list[CashBalance] = field(default_factory=list)
    as_of: Optional[datetime] = None

    def positions_by_symbol(self) -> dict[str, Position]:
        """Positions merged across accounts, keyed by symbol."""
        return {p.symbol: p for p in aggregate_positions(self.positions)}

    def cash_by_currency(self) -> dict[str, Decimal]:
        """Cash summed across accounts, keyed by currency (CAD and USD always present)."""
        return total_cash_by_currency(self.cash)

    @property
    def is_empty(self) -> bool:
        """True when no transaction matched (an empty ledger is a valid result)."""
        return not self.positions and not self.cash


@dataclass
class _PositionState:
    symbol: str
    currency: str
    account_id: str
    quantity: Decimal = ZERO
    total_cost: Decimal = ZERO
    cost_in_base: Decimal = ZERO


def sort_rows(rows: Iterable[LedgerRow]) -> list[LedgerRow]:
    """Order rows by settlement date; equal dates keep their input order."""
    return sorted(rows, key=lambda r: r.settlement_date)


def _dispose(state: _PositionState, row: LedgerRow, policy: OverdraftPolicy) -> None:
    units = abs(to_decimal(row.quantity))
    held = state.quantity

    if units > held + POSITION_EPSILON:
        if policy is OverdraftPolicy.RAISE:
            raise OverdraftPositionError(state.account_id, state.symbol, held, units)
        logger.warning(
            f"{row.action.value} of {units} {state.symbol} exceeds held {held} "
            f"in account {state.account_id} (row {row.id}); closing position"
        )
        units = held

    if held <= ZERO:
        return

    avg_cost = state.total_cost / held
    remaining = held - units
    if remaining < ZERO:
        # Within epsilon of the held quantity: treat as fully closed
        remaining = ZERO
    state.cost_in_base = state.cost_in_base * remaining / held
    state.quantity = remaining
    state.total_cost = remaining * avg_cost


def _apply(state: _PositionState, row: LedgerRow, policy: OverdraftPolicy) -> None:
    qty = to_decimal(row.quantity)
    price = to_decimal(row.price)
    action = row.action

    if action is TransactionAction.BUY:
        state.quantity += qty
        state.total_cost += abs(qty * price) + abs(to_decimal(row.commission))

    elif action is TransactionAction.REINVESTED_DIVIDEND:
        state.quantity += qty
        if price > ZERO:
            state.total_cost += abs(qty * price)
        else:
            # Reinvestment rows often omit the price
            state.total_cost += abs(to_decimal(row.net_amount))

    elif action in DEPOSIT_ACTIONS:
        state.quantity += qty
        if row.cad_equivalent is not None:
            state.total_cost += row.cad_equivalent
            state.cost_in_base += row.cad_equivalent
        else:
            state.total_cost += abs(to_decimal(row.net_amount))

    elif action in DISPOSAL_ACTIONS:
        _dispose(state, row, policy)

    elif action is TransactionAction.DISTRIBUTION:
        state.quantity += qty


def replay_ledger(
    rows: Iterable[LedgerRow],
    as_of: Optional[datetime] = None,
    account_id: Optional[str] = None,
    overdraft_policy: OverdraftPolicy = OverdraftPolicy.RAISE,
) -> ReplayResult:
    """
    Replay ledger rows into positions and cash balances.

    Args:
        rows: Ledger rows, in insertion order
        as_of: Ignore rows settling after this moment (None = all rows)
        account_id: Only replay this account (None = every account)
        overdraft_policy: Handling of disposals larger than the position

    Returns:
        ReplayResult with positions above POSITION_EPSILON and per-account cash

    Raises:
        InvalidLedgerRowError: A malformed row was encountered
        OverdraftPositionError: A disposal exceeded the position under RAISE
    """
    states: dict[tuple[str, str], _PositionState] = {}
    cash: dict[tuple[str, str], Decimal] = defaultdict(lambda: ZERO)

    rows = list(rows)
    for row in rows:
        row.validate()

    for row in sort_rows(rows):
        if as_of is not None and row.settlement_date > as_of:
            break
        if account_id and row.account_id != account_id:
            continue

        if row.moves_units:
            key = (row.account_id, row.key)
            state = states.get(key)
            if state is None:
                state = _PositionState(
                    symbol=row.key, currency=row.currency, account_id=row.account_id
                )
                states[key] = state
            _apply(state, row, overdraft_policy)

        net_amount = to_decimal(row.net_amount)
        if net_amount != ZERO:
            cash[(row.account_id, row.currency)] += net_amount

    positions = [
        Position(
            symbol=s.symbol,
            quantity=s.quantity,
            avg_cost=s.total_cost / s.quantity,
            total_cost=s.total_cost,
            currency=s.currency,
            account_id=s.account_id,
            cost_in_base=s.cost_in_base,
        )
        for _, s in sorted(states.items())
        if s.quantity > POSITION_EPSILON
    ]
    balances = [
        CashBalance(currency=currency, balance=balance, account_id=acct)
        for (acct, currency), balance in sorted(cash.items())
    ]

    return ReplayResult(positions=positions, cash=balances, as_of=as_of)


def aggregate_positions(positions: Iterable[Position]) -> list[Position]:
    """
    Merge positions in the same symbol across accounts.

    Positions are merged only when their currencies match; a same-symbol
    position in a different currency is kept out of the merge and logged.

    Returns:
        One position per symbol, sorted by symbol
    """
    merged: dict[str, Position] = {}

    for pos in positions:
        existing = merged.get(pos.symbol)
        if existing is None:
            merged[pos.symbol] = Position(
                symbol=pos.symbol,
                quantity=pos.quantity,
                avg_cost=pos.avg_cost,
                total_cost=pos.total_cost,
                currency=pos.currency,
                account_id=pos.account_id,
                cost_in_base=pos.cost_in_base,
            )
            continue

        if existing.currency != pos.currency:
            logger.warning(
                f"Not merging {pos.symbol} held in {pos.currency} "
                f"into {existing.currency} position"
            )
            continue

        existing.quantity += pos.quantity
        existing.total_cost += pos.total_cost
        existing.cost_in_base += pos.cost_in_base
        existing.avg_cost = existing.total_cost / existing.quantity
        if existing.account_id != pos.account_id:
            existing.account_id = None

    return [merged[s] for s in sorted(merged)]


def total_cash_by_currency(balances: Iterable[CashBalance]) -> dict[str, Decimal]:
    """Sum balances per currency; CAD and USD are always present."""
    totals: dict[str, Decimal] = {"CAD": ZERO, "USD": ZERO}
    for b in balances:
        totals[b.currency] = totals.get(b.currency, ZERO) + b.balance
    return totals


class PositionReplayService:
    """Replay positions and cash straight from the ledger store."""

    def __init__(self, store: Optional[LedgerStore] = None):
        """Initialize with a ledger store (default: the SQLAlchemy store)."""
        self.store = store or LedgerStore()

    def replay(
        self,
        account_id: Optional[str] = None,
        as_of: Optional[datetime] = None,
        overdraft_policy: OverdraftPolicy = OverdraftPolicy.RAISE,
    ) -> ReplayResult:
        """
        Current (or as-of) positions and cash.

        Args:
            account_id: Restrict to one account
            as_of: Settlement cut-off, inclusive
            overdraft_policy: Handling of oversized disposals

        Returns:
            ReplayResult (empty when no transaction matches)
        """
        rows = self.store.list_transactions(
            LedgerFilter(account_id=account_id, settled_on_or_before=as_of)
        )
        if not rows:
            logger.info(f"No transactions for account={account_id or 'all'} as of {as_of}")
            return ReplayResult(as_of=as_of)

        result = replay_ledger(rows, as_of=as_of, overdraft_policy=overdraft_policy)
        logger.debug(
            f"Replayed {len(rows)} transactions into {len(result.positions)} positions"
        )
        return result
