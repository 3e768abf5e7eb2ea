"""Persistent cache rows for quotes and the FX rate."""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import TIMESTAMP, CheckConstraint, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from portfolio_ledger.lib.db import Base


class PriceQuoteCacheEntry(Base):
    """
    Latest quote for one symbol.

    Readable while ``now < expires_at``; overwritten on every successful fetch.
    Timestamps are naive UTC.
    """

    __tablename__ = "price_cache"

    symbol: Mapped[str] = mapped_column(String(32), primary_key=True)

    price: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    previous_close: Mapped[Decimal | None] = mapped_column(Numeric(20, 8), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    dividend_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(20, 8), nullable=True, comment="Trailing annual dividend per share"
    )
    dividend_yield: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 8), nullable=True, comment="Trailing annual dividend yield (fraction)"
    )

    fetched_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False, index=True)

    __table_args__ = (CheckConstraint("price > 0", name="ck_price_cache_price_positive"),)

    def is_valid(self, now: datetime) -> bool:
        """True while the entry has not expired."""
        return now < self.expires_at

    def __repr__(self) -> str:
        """String representation of the cached quote."""
        return (
            f"PriceQuoteCacheEntry(symbol={self.symbol!r}, price={self.price}, "
            f"currency={self.currency}, expires_at={self.expires_at.isoformat()})"
        )


class FxRateCacheEntry(Base):
    """Latest rate for one currency pair (only ``USDCAD`` is used)."""

    __tablename__ = "fx_cache"

    pair: Mapped[str] = mapped_column(
        String(6),
        primary_key=True,
        comment="Base and quote ISO codes concatenated, e.g. USDCAD",
    )

    rate: Mapped[Decimal] = mapped_column(
        Numeric(precision=20, scale=8),
        nullable=False,
        comment="Units of quote currency per unit of base currency",
    )

    fetched_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(TIMESTAMP, nullable=False)

    __table_args__ = (CheckConstraint("rate > 0", name="ck_fx_cache_rate_positive"),)

    def is_valid(self, now: datetime) -> bool:
        """True while the entry has not expired."""
        return now < self.expires_at

    def __repr__(self) -> str:
        """String representation showing the rate."""
        return f"FxRateCacheEntry({self.pair} = {self.rate}, expires {self.expires_at})"
