"""Pytest configuration and fixtures for all tests."""

import os
import tempfile
from datetime import datetime
from pathlib import Path

import pytest

from portfolio_ledger.lib.db import init_db, reset_db, reset_engine
from portfolio_ledger.lib.money import optional_decimal
from portfolio_ledger.models import LedgerRow, TransactionAction


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Initialize test database before any tests run.

    Creates a temporary database for testing that is automatically cleaned up.
    Uses session scope so database is created once per test session.
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as tmp:
        test_db_path = Path(tmp.name)

    # Set environment variables BEFORE initializing
    os.environ["PORTFOLIO_LEDGER_DB_PATH"] = str(test_db_path)
    os.environ["LOG_FILE"] = ""
    os.environ.pop("EXCHANGE_RATE_API_KEY", None)

    reset_engine()
    init_db(test_db_path)

    yield test_db_path

    reset_engine()
    if test_db_path.exists():
        test_db_path.unlink()


@pytest.fixture(autouse=True)
def reset_database_between_tests(setup_test_database):
    """Reset database state between each test.

    This ensures test isolation by clearing all data between tests
    while keeping the schema intact.
    """
    reset_engine()
    reset_db(setup_test_database)

    yield


@pytest.fixture
def make_row():
    """Factory for ledger rows with sensible defaults.

    Numbers may be given as str/int/float; dates as ``YYYY-MM-DD``.
    """
    counter = iter(range(1, 100_000))

    def _make(
        action: TransactionAction,
        settled: str = "2024-01-02",
        *,
        account_id: str = "ACC-1",
        symbol: str | None = None,
        symbol_mapped: str | None = None,
        quantity=None,
        price=None,
        commission=None,
        net_amount=None,
        cad_equivalent=None,
        currency: str = "CAD",
        row_id: int | None = None,
    ) -> LedgerRow:
        return LedgerRow(
            id=row_id if row_id is not None else next(counter),
            account_id=account_id,
            action=action,
            currency=currency,
            settlement_date=datetime.fromisoformat(settled),
            symbol=symbol,
            symbol_mapped=symbol_mapped,
            quantity=optional_decimal(quantity),
            price=optional_decimal(price),
            commission=optional_decimal(commission),
            net_amount=optional_decimal(net_amount),
            cad_equivalent=optional_decimal(cad_equivalent),
        )

    return _make
