"""Read/append access to the transaction ledger."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from portfolio_ledger.lib.db import db_session
from portfolio_ledger.lib.errors import DatabaseError
from portfolio_ledger.models import LedgerRow, Transaction, TransactionAction

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerFilter:
    """Closed set of ledger query criteria.

    Attributes:
        account_id: Restrict to one account (None = all accounts)
        actions: Restrict to these actions (empty = all actions)
        settled_on_or_before: Upper settlement bound, inclusive
        settled_on_or_after: Lower settlement bound, inclusive
        symbol: Restrict to rows whose mapped (or raw) symbol matches
    """

    account_id: Optional[str] = None
    actions: frozenset[TransactionAction] = frozenset()
    settled_on_or_before: Optional[datetime] = None
    settled_on_or_after: Optional[datetime] = None
    symbol: Optional[str] = None


class LedgerStore:
    """SQLAlchemy-backed ledger. The engine only ever reads through it."""

    def list_transactions(self, ledger_filter: Optional[LedgerFilter] = None) -> list[LedgerRow]:
        """
        List transactions matching a filter.

        Args:
            ledger_filter: Criteria (None = whole ledger)

        Returns:
            Detached rows ascending by settlement date, then insertion order
        """
        f = ledger_filter or LedgerFilter()
        stmt = select(Transaction)

        if f.account_id:
            stmt = stmt.where(Transaction.account_id == f.account_id)
        if f.actions:
            stmt = stmt.where(Transaction.action.in_(f.actions))
        if f.settled_on_or_before is not None:
            stmt = stmt.where(Transaction.settlement_date <= f.settled_on_or_before)
        if f.settled_on_or_after is not None:
            stmt = stmt.where(Transaction.settlement_date >= f.settled_on_or_after)
        if f.symbol:
            stmt = stmt.where(
                func.coalesce(Transaction.symbol_mapped, Transaction.symbol) == f.symbol
            )

        stmt = stmt.order_by(Transaction.settlement_date, Transaction.id)

        try:
            with db_session() as session:
                return [LedgerRow.from_model(tx) for tx in session.execute(stmt).scalars()]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to read ledger: {e}") from e

    def first_settlement_date(self, account_id: Optional[str] = None) -> Optional[datetime]:
        """Settlement date of the earliest transaction, or None for an empty ledger."""
        stmt = select(func.min(Transaction.settlement_date))
        if account_id:
            stmt = stmt.where(Transaction.account_id == account_id)

        with db_session() as session:
            return session.execute(stmt).scalar_one_or_none()

    def account_ids(self) -> list[str]:
        """Accounts that have at least one transaction."""
        stmt = select(Transaction.account_id).distinct().order_by(Transaction.account_id)
        with db_session() as session:
            return list(session.execute(stmt).scalars())

    def append(self, rows: Iterable[LedgerRow]) -> list[int]:
        """
        Append normalized rows to the ledger.

        Every row is validated before anything is written, so a bad batch
        leaves the ledger untouched.

        Args:
            rows: Rows to insert (their ``id`` is ignored)

        Returns:
            Database ids of the inserted rows, in input order

        Raises:
            InvalidLedgerRowError: A row is malformed
        """
        rows = list(rows)
        for row in rows:
            row.validate()

        try:
            with db_session() as session:
                models = [row.to_model() for row in rows]
                session.add_all(models)
                session.flush()
                ids = [m.id for m in models]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to append transactions: {e}") from e

        logger.info(f"Appended {len(ids)} transactions")
        return ids

    def remove_account(self, account_id: str) -> int:
        """
        Delete every transaction of an account (the ledger's only deletion path).

        Returns:
            Number of rows removed
        """
        with db_session() as session:
            result = session.execute(delete(Transaction).where(Transaction.account_id == account_id))
            removed = result.rowcount or 0

        logger.info(f"Removed {removed} transactions for account {account_id}")
        return removed
