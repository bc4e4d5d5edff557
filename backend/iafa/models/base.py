"""Base model utilities for the IAFA ledger.

Provides a UUID primary-key mixin so every model automatically gets
a ``id`` column of type ``Uuid`` with a client-side default, which keeps
the schema portable between PostgreSQL and SQLite.
"""
from __future__ import annotations

import datetime
import uuid

from sqlalchemy import Uuid
from sqlalchemy.orm import Mapped, mapped_column


class UUIDPrimaryKeyMixin:
    """Mixin that adds a UUID primary key column named ``id``."""

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )


def utcnow() -> datetime.datetime:
    """Naive UTC timestamp, matching the ``TIMESTAMP WITHOUT TIME ZONE`` columns."""
    return datetime.datetime.now(datetime.timezone.utc).replace(tzinfo=None)
