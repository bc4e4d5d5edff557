"""User model for authentication and role-based access."""
from __future__ import annotations

import datetime

from sqlalchemy import Boolean, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from iafa.database import Base
from iafa.models.base import UUIDPrimaryKeyMixin


class User(UUIDPrimaryKeyMixin, Base):
    """A ledger user; ``role`` selects the permission set in ``iafa.rbac``."""
    __tablename__ = "users"

    username: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False
    )
    password_hash: Mapped[str] = mapped_column(String(200), nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str | None] = mapped_column(String(200))
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("true")
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        nullable=False,
        server_default=func.now(),
    )

    def __repr__(self) -> str:
        return f"<User {self.username!r} role={self.role!r}>"
