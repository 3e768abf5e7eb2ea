"""
SQLAlchemy models for the portfolio-ledger application.

All models inherit from the Base declarative class defined in portfolio_ledger.lib.db.
"""

from portfolio_ledger.models.market_cache import FxRateCacheEntry, PriceQuoteCacheEntry
from portfolio_ledger.models.transaction import (
    CASH_ONLY_ACTIONS,
    DEPOSIT_ACTIONS,
    DISPOSAL_ACTIONS,
    TRADE_ACTIONS,
    UNIT_ACTIONS,
    WITHDRAWAL_ACTIONS,
    LedgerRow,
    Transaction,
    TransactionAction,
)

__all__ = [
    # Ledger
    "Transaction",
    "LedgerRow",
    "TransactionAction",
    "DEPOSIT_ACTIONS",
    "WITHDRAWAL_ACTIONS",
    "DISPOSAL_ACTIONS",
    "CASH_ONLY_ACTIONS",
    "TRADE_ACTIONS",
    "UNIT_ACTIONS",
    # Market data cache
    "PriceQuoteCacheEntry",
    "FxRateCacheEntry",
]
