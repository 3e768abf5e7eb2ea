"""Cumulative external contributions minus withdrawals."""

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from portfolio_ledger.lib.money import ZERO, to_decimal
from portfolio_ledger.models import DEPOSIT_ACTIONS, WITHDRAWAL_ACTIONS, LedgerRow


def deposit_value(row: LedgerRow) -> Decimal:
    """Value a deposit or withdrawal contributes: CAD equivalent, else |net amount|."""
    if row.cad_equivalent is not None:
        return abs(row.cad_equivalent)
    return abs(to_decimal(row.net_amount))


def calculate_net_deposits(
    rows: Iterable[LedgerRow],
    as_of: Optional[datetime] = None,
    account_id: Optional[str] = None,
) -> Decimal:
    """
    Net deposits: CON/TFI/DEP add, WDR/TFO subtract.

    Args:
        rows: Ledger rows (any order)
        as_of: Ignore rows settling after this moment
        account_id: Restrict to one account

    Returns:
        Net deposits in CAD terms
    """
    total = ZERO
    for row in rows:
        if as_of is not None and row.settlement_date > as_of:
            continue
        if account_id and row.account_id != account_id:
            continue

        if row.action in DEPOSIT_ACTIONS:
            total += deposit_value(row)
        elif row.action in WITHDRAWAL_ACTIONS:
            total -= deposit_value(row)

    return total
