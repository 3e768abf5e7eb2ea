"""
Transaction model for the append-only brokerage ledger.

Rows arrive already normalized by the ingestion pipeline. The engine
never mutates them; it reads them back as immutable ``LedgerRow`` values.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import TIMESTAMP, DateTime, Enum, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_ledger.lib.db import Base
from portfolio_ledger.lib.errors import InvalidLedgerRowError


class TransactionAction(str, enum.Enum):
    """Closed set of broker action codes."""

    BUY = "Buy"
    SELL = "Sell"
    REINVESTED_DIVIDEND = "REI"
    DIVIDEND = "DIV"

    # Cash or in-kind deposits
    CONTRIBUTION = "CON"
    TRANSFER_IN = "TFI"
    DEPOSIT = "DEP"

    # Cash or in-kind withdrawals
    WITHDRAWAL = "WDR"
    TRANSFER_OUT = "TFO"

    DISTRIBUTION = "DIS"  # Distribution / split: free units

    # Cash only
    FX_CONVERSION = "FXT"
    ADJUSTMENT = "ADJ"
    INTEREST = "INT"
    FEE_CHARGE = "FCH"
    EXPENSE = "EXP"
    BORROW = "BRW"


DEPOSIT_ACTIONS = frozenset(
    {TransactionAction.CONTRIBUTION, TransactionAction.TRANSFER_IN, TransactionAction.DEPOSIT}
)
WITHDRAWAL_ACTIONS = frozenset({TransactionAction.WITHDRAWAL, TransactionAction.TRANSFER_OUT})
DISPOSAL_ACTIONS = frozenset({TransactionAction.SELL}) | WITHDRAWAL_ACTIONS
TRADE_ACTIONS = frozenset(
    {TransactionAction.BUY, TransactionAction.SELL, TransactionAction.REINVESTED_DIVIDEND}
)
UNIT_ACTIONS = (
    TRADE_ACTIONS | DEPOSIT_ACTIONS | WITHDRAWAL_ACTIONS | {TransactionAction.DISTRIBUTION}
)
CASH_ONLY_ACTIONS = frozenset(
    {
        TransactionAction.DIVIDEND,
        TransactionAction.FX_CONVERSION,
        TransactionAction.ADJUSTMENT,
        TransactionAction.INTEREST,
        TransactionAction.FEE_CHARGE,
        TransactionAction.EXPENSE,
        TransactionAction.BORROW,
    }
)


class Transaction(Base):  # type: ignore[misc,valid-type]
    """
    A single normalized brokerage transaction.

    Attributes:
        id: Autoincrement key; also the insertion order used to break
            settlement-date ties during replay
        account_id: Owning account
        action: Broker action code
        symbol: Raw broker symbol
        symbol_mapped: Market data symbol (e.g. ``XEQT.TO``), preferred over symbol
        quantity: Units moved (sign as reported by the broker)
        price: Price per unit
        commission: Commission charged
        net_amount: Signed cash effect in ``currency``
        cad_equivalent: CAD value reported for in-kind transfers
        currency: Currency of ``net_amount``
        settlement_date: Date the transaction takes economic effect
    """

    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    account_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    action: Mapped[TransactionAction] = mapped_column(
        Enum(TransactionAction, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        index=True,
    )

    symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    symbol_mapped: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)

    # DECIMAL PRECISION: Numeric(20, 8) for quantities, prices and amounts.
    # Fractional DRIP units times precise prices need more than 2 decimals.
    quantity: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    price: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    commission: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    cad_equivalent: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    settlement_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP,
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_transactions_account_settlement", "account_id", "settlement_date"),
    )

    def __repr__(self) -> str:
        """Return string representation of transaction."""
        return (
            f"<Transaction(id={self.id!r}, "
            f"action={self.action.value}, "
            f"symbol={self.symbol_mapped or self.symbol!r}, "
            f"settlement_date={self.settlement_date}, "
            f"net_amount={self.net_amount} {self.currency})>"
        )


@dataclass(frozen=True)
class LedgerRow:
    """Immutable, session-independent view of a ``Transaction``."""

    id: Optional[int]
    account_id: str
    action: TransactionAction
    currency: str
    settlement_date: datetime
    symbol: Optional[str] = None
    symbol_mapped: Optional[str] = None
    quantity: Optional[Decimal] = None
    price: Optional[Decimal] = None
    commission: Optional[Decimal] = None
    net_amount: Optional[Decimal] = None
    cad_equivalent: Optional[Decimal] = None
    description: Optional[str] = None

    @property
    def key(self) -> str:
        """Symbol used to key positions and quotes."""
        return self.symbol_mapped or self.symbol or ""

    @property
    def moves_units(self) -> bool:
        """True when the row changes a position's quantity."""
        return (
            self.action in UNIT_ACTIONS and bool(self.key) and self.quantity is not None
        )

    def validate(self) -> None:
        """
        Reject rows that ingestion should never have let through.

        Deposits, withdrawals and distributions without a symbol or quantity
        are cash movements and are valid; trades must name both.

        Raises:
            InvalidLedgerRowError: The row is malformed
        """
        if not self.account_id:
            raise InvalidLedgerRowError(self.id, "missing account_id")
        if not isinstance(self.action, TransactionAction):
            raise InvalidLedgerRowError(self.id, f"unknown action {self.action!r}")
        if not self.currency:
            raise InvalidLedgerRowError(self.id, "missing currency")
        if not isinstance(self.settlement_date, datetime):
            raise InvalidLedgerRowError(self.id, "missing settlement_date")
        if self.action in TRADE_ACTIONS:
            if not self.key:
                raise InvalidLedgerRowError(self.id, f"{self.action.value} row without symbol")
            if self.quantity is None:
                raise InvalidLedgerRowError(self.id, f"{self.action.value} row without quantity")

    @classmethod
    def from_model(cls, tx: Transaction) -> "LedgerRow":
        """Detach an ORM row."""
        return cls(
            id=tx.id,
            account_id=tx.account_id,
            action=tx.action,
            currency=tx.currency,
            settlement_date=tx.settlement_date,
            symbol=tx.symbol,
            symbol_mapped=tx.symbol_mapped,
            quantity=tx.quantity,
            price=tx.price,
            commission=tx.commission,
            net_amount=tx.net_amount,
            cad_equivalent=tx.cad_equivalent,
            description=tx.description,
        )

    def to_model(self) -> Transaction:
        """Build an ORM row for insertion (``id`` is assigned by the database)."""
        return Transaction(
            account_id=self.account_id,
            action=self.action,
            currency=self.currency,
            settlement_date=self.settlement_date,
            symbol=self.symbol,
            symbol_mapped=self.symbol_mapped,
            quantity=self.quantity,
            price=self.price,
            commission=self.commission,
            net_amount=self.net_amount,
            cad_equivalent=self.cad_equivalent,
            description=self.description,
        )
