"""Ledger models: accounts and the ledger heads that hold running balances."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from iafa.database import Base
from iafa.models.base import UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from iafa.models.period import AccountingPeriod


HEAD_TYPES = ("credit", "debit")


class Account(UUIDPrimaryKeyMixin, Base):
    """A book of ledger heads that is closed month by month."""
    __tablename__ = "accounts"

    name: Mapped[str] = mapped_column(String(200), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    # Last day of the most recently closed accounting period.
    last_closed_date: Mapped[datetime.date | None] = mapped_column(Date)
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # ------ relationships ------
    ledger_heads: Mapped[list[LedgerHead]] = relationship(
        "LedgerHead",
        back_populates="account",
        order_by="LedgerHead.name",
    )
    periods: Mapped[list[AccountingPeriod]] = relationship(
        "AccountingPeriod",
        back_populates="account",
    )

    def __repr__(self) -> str:
        return f"<Account {self.name!r} closed_through={self.last_closed_date}>"


class LedgerHead(UUIDPrimaryKeyMixin, Base):
    """A named bucket under an account holding a cash and a bank balance."""
    __tablename__ = "ledger_heads"
    __table_args__ = (
        UniqueConstraint("account_id", "name", name="uq_ledger_heads_account_name"),
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    head_type: Mapped[str] = mapped_column(String(10), nullable=False)
    cash_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    bank_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    description: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    # ------ relationships ------
    account: Mapped[Account] = relationship(
        "Account",
        back_populates="ledger_heads",
    )

    @property
    def current_balance(self) -> decimal.Decimal:
        """Derived; cash and bank balances are the authoritative figures."""
        return (self.cash_balance or 0) + (self.bank_balance or 0)

    def __repr__(self) -> str:
        return (
            f"<LedgerHead {self.name!r} type={self.head_type!r} "
            f"cash={self.cash_balance} bank={self.bank_balance}>"
        )
