"""Ledger replay and valuation engine for a two-currency brokerage portfolio."""

__version__ = "0.1.0"
