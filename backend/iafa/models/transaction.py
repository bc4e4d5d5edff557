"""Transaction models: transaction headers, double-entry legs and cheques."""
from __future__ import annotations

import datetime
import decimal
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
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
    from iafa.models.donor import Booklet, Donor
    from iafa.models.ledger import Account, LedgerHead


TX_TYPES = ("credit", "debit")
CASH_TYPES = ("cash", "bank", "upi", "card", "netbank", "cheque", "multiple")
TX_STATUSES = ("completed", "pending", "cancelled")
CHEQUE_STATUSES = ("pending", "cleared", "cancelled")


class Transaction(UUIDPrimaryKeyMixin, Base):
    """A credit or debit posted against an account's ledger heads."""
    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("booklet_id", "receipt_no", name="uq_transactions_booklet_receipt"),
        Index("ix_transactions_account_tx_date", "account_id", "tx_date"),
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    # Credited head for credits, destination head for debits.
    ledger_head_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_heads.id"),
        nullable=False,
    )
    donor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("donors.id"),
    )
    booklet_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("booklets.id"),
    )
    receipt_no: Mapped[int | None] = mapped_column(Integer)
    tx_type: Mapped[str] = mapped_column(String(10), nullable=False)
    cash_type: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cash_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    bank_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    tx_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        server_default=text("'completed'"),
    )
    admin_override: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
    )
    cancelled_at: Mapped[datetime.datetime | None] = mapped_column()
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
    account: Mapped[Account] = relationship("Account", lazy="selectin")
    ledger_head: Mapped[LedgerHead] = relationship("LedgerHead", lazy="selectin")
    donor: Mapped[Donor | None] = relationship("Donor", lazy="selectin")
    booklet: Mapped[Booklet | None] = relationship("Booklet", lazy="selectin")
    items: Mapped[list[TransactionItem]] = relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    cheque: Mapped[Cheque | None] = relationship(
        "Cheque",
        back_populates="transaction",
        uselist=False,
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return (
            f"<Transaction {self.tx_type} {self.amount} {self.cash_type} "
            f"on {self.tx_date} status={self.status!r}>"
        )


class TransactionItem(UUIDPrimaryKeyMixin, Base):
    """One signed leg of a transaction.

    ``amount`` is signed (positive for side ``+``).  ``cash_amount`` and
    ``bank_amount`` carry the same sign and add up to ``amount``.  A leg
    without a ledger head is the external counterparty of a credit.
    """
    __tablename__ = "transaction_items"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ledger_head_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("ledger_heads.id"),
        index=True,
    )
    side: Mapped[str] = mapped_column(String(1), nullable=False)
    amount: Mapped[decimal.Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    cash_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    bank_amount: Mapped[decimal.Decimal] = mapped_column(
        Numeric(14, 2), nullable=False, default=decimal.Decimal("0.00")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    # ------ relationships ------
    transaction: Mapped[Transaction] = relationship(
        "Transaction",
        back_populates="items",
    )

    def __repr__(self) -> str:
        return f"<TransactionItem {self.side}{abs(self.amount)} head={self.ledger_head_id}>"


class Cheque(UUIDPrimaryKeyMixin, Base):
    """Cheque attached 1:1 to a transaction whose cash type is ``cheque``."""
    __tablename__ = "cheques"

    transaction_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("transactions.id"),
        unique=True,
        nullable=False,
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
    cheque_number: Mapped[str] = mapped_column(String(50), nullable=False)
    bank_name: Mapped[str] = mapped_column(String(200), nullable=False)
    issue_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    due_date: Mapped[datetime.date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
        server_default=text("'pending'"),
    )
    clearing_date: Mapped[datetime.date | None] = mapped_column(Date)
    description: Mapped[str | None] = mapped_column(Text)
    cancel_reason: Mapped[str | None] = mapped_column(Text)
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
    transaction: Mapped[Transaction] = relationship(
        "Transaction",
        back_populates="cheque",
    )

    def __repr__(self) -> str:
        return f"<Cheque {self.cheque_number!r} status={self.status!r}>"
