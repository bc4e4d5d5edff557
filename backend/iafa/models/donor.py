"""Donor and receipt booklet models."""
from __future__ import annotations

import datetime

from sqlalchemy import JSON, Boolean, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from iafa.database import Base
from iafa.models.base import UUIDPrimaryKeyMixin


class Donor(UUIDPrimaryKeyMixin, Base):
    """A person or organisation credited on receipts."""
    __tablename__ = "donors"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(String(200))
    address: Mapped[str | None] = mapped_column(Text)
    pan: Mapped[str | None] = mapped_column(String(20))
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Donor {self.name!r}>"


class Booklet(UUIDPrimaryKeyMixin, Base):
    """A physical receipt booklet numbered ``start_no`` to ``end_no``."""
    __tablename__ = "booklets"

    booklet_no: Mapped[str] = mapped_column(String(40), unique=True, nullable=False)
    start_no: Mapped[int] = mapped_column(Integer, nullable=False)
    end_no: Mapped[int] = mapped_column(Integer, nullable=False)
    # Receipt numbers not yet used by a transaction.
    pages_left: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<Booklet {self.booklet_no!r} {self.start_no}-{self.end_no}>"
