"""Unit tests for net deposit calculation."""

from datetime import datetime
from decimal import Decimal

import pytest

from portfolio_ledger.models import TransactionAction as A
from portfolio_ledger.services.net_deposits import calculate_net_deposits, deposit_value


@pytest.mark.unit
class TestNetDeposits:
    """Deposits add, withdrawals subtract, everything else is ignored."""

    @pytest.fixture
    def rows(self, make_row):
        return [
            make_row(A.DEPOSIT, "2024-01-01", net_amount=1000),
            make_row(A.TRANSFER_IN, "2024-02-01", symbol="XEQT", quantity=10,
                     cad_equivalent="310.50"),
            make_row(A.CONTRIBUTION, "2024-03-01", net_amount=200, account_id="RRSP"),
            make_row(A.BUY, "2024-03-02", symbol="XEQT", quantity=1, price=30, net_amount=-30),
            make_row(A.WITHDRAWAL, "2024-04-01", net_amount=-250),
            make_row(A.TRANSFER_OUT, "2024-05-01", symbol="XEQT", quantity=-2,
                     cad_equivalent="-64"),
        ]

    def test_total(self, rows):
        # 1000 + 310.50 + 200 - 250 - 64
        assert calculate_net_deposits(rows) == Decimal("1196.50")

    def test_as_of(self, rows):
        assert calculate_net_deposits(rows, as_of=datetime(2024, 2, 28)) == Decimal("1310.50")

    def test_account_filter(self, rows):
        assert calculate_net_deposits(rows, account_id="RRSP") == Decimal("200")

    def test_cad_equivalent_preferred_over_net_amount(self, make_row):
        row = make_row(A.TRANSFER_IN, symbol="AAPL", quantity=1, net_amount="-150",
                       cad_equivalent="205", currency="USD")
        assert deposit_value(row) == Decimal("205")

    def test_empty(self):
        assert calculate_net_deposits([]) == Decimal("0")
