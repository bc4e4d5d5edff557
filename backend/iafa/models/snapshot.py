"""Monthly ledger balance snapshots."""
from __future__ import annotations

import datetime
import decimal
import uuid

from sqlalchemy import ForeignKey, Index, Integer, Numeric, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from iafa.database import Base
from iafa.models.base import UUIDPrimaryKeyMixin
from iafa.models.ledger import Account, LedgerHead

ZERO = decimal.Decimal("0.00")


class MonthlyLedgerBalance(UUIDPrimaryKeyMixin, Base):
    """One row per (account, ledger head, month, year).

    ``closing_balance = opening_balance + receipts - payments`` and
    ``closing_balance = cash_in_hand + cash_in_bank`` (month-end positions).
    """
    __tablename__ = "monthly_ledger_balances"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "ledger_head_id", "month", "year",
            name="uq_monthly_ledger_balances_period",
        ),
        Index("ix_monthly_ledger_balances_chain", "ledger_head_id", "year", "month"),
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    ledger_head_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_heads.id"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    opening_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    receipts: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    payments: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    closing_balance: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    cash_in_hand: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    cash_in_bank: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=ZERO
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    account: Mapped[Account] = relationship("Account", lazy="selectin")
    ledger_head: Mapped[LedgerHead] = relationship("LedgerHead", lazy="selectin")

    @property
    def period_key(self) -> tuple[int, int]:
        return (self.year, self.month)

    def __repr__(self) -> str:
        return (
            f"<MonthlyLedgerBalance {self.year}-{self.month:02d} "
            f"open={self.opening_balance} close={self.closing_balance}>"
        )
