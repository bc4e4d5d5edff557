"""Accounting period models: per-account monthly periods and the closure log."""
from __future__ import annotations

import datetime
import uuid
from typing import TYPE_CHECKING

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
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
    from iafa.models.ledger import Account


PERIOD_STATUSES = ("open", "closed")

CLOSE_PERIOD = "CLOSE_PERIOD"
REOPEN_PERIOD = "REOPEN_PERIOD"
FORCE_CLOSE_PERIOD = "FORCE_CLOSE_PERIOD"
OPEN_PERIOD = "OPEN_PERIOD"
CLOSURE_ACTIONS = (CLOSE_PERIOD, REOPEN_PERIOD, FORCE_CLOSE_PERIOD, OPEN_PERIOD)


class AccountingPeriod(UUIDPrimaryKeyMixin, Base):
    """A calendar month of an account that has been opened at some point."""
    __tablename__ = "accounting_periods"
    __table_args__ = (
        UniqueConstraint("account_id", "month", "year", name="uq_accounting_periods_month"),
        CheckConstraint(
            "status IN (" + ", ".join(f"'{s}'" for s in PERIOD_STATUSES) + ")",
            name="ck_accounting_periods_status",
        ),
        # At most one open period per account.
        Index(
            "uq_accounting_periods_one_open",
            "account_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
            sqlite_where=text("status = 'open'"),
        ),
    )

    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id", ondelete="CASCADE"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False)
    opened_at: Mapped[datetime.datetime | None] = mapped_column()
    opened_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
    )
    closed_at: Mapped[datetime.datetime | None] = mapped_column()
    closed_by: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
    )

    # ------ relationships ------
    account: Mapped[Account] = relationship(
        "Account",
        back_populates="periods",
    )

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.year}-{self.month:02d} status={self.status!r}>"


class PeriodClosureLog(UUIDPrimaryKeyMixin, Base):
    """Append-only record of period closure actions."""
    __tablename__ = "period_closure_log"
    __table_args__ = (
        Index("ix_period_closure_log_account_created", "account_id", "created_at"),
    )

    action: Mapped[str] = mapped_column(String(30), nullable=False)
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("accounts.id"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    actor_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id"),
    )
    details: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime.datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<PeriodClosureLog {self.action} {self.year}-{self.month:02d}>"
