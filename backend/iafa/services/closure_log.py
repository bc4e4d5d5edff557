"""Append-only period closure log.

Rows are only ever inserted; this module has no update or delete helper.
"""
from __future__ import annotations

import json
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.exceptions import StorageError, ValidationError
from iafa.models.base import utcnow
from iafa.models.period import CLOSURE_ACTIONS, PeriodClosureLog

logger = logging.getLogger(__name__)


async def record(
    db: AsyncSession,
    action: str,
    account_id: uuid.UUID,
    month: int,
    year: int,
    actor_id: uuid.UUID | None,
    details: str | dict[str, Any] | None = None,
) -> PeriodClosureLog:
    """Append one closure log entry to the current unit of work."""
    if action not in CLOSURE_ACTIONS:
        raise ValidationError(f"Unknown closure action {action!r}")
    if isinstance(details, dict):
        details = json.dumps(details, default=str, sort_keys=True)

    entry = PeriodClosureLog(
        action=action,
        account_id=account_id,
        month=month,
        year=year,
        actor_id=actor_id,
        details=details,
        created_at=utcnow(),
    )
    db.add(entry)
    try:
        await db.flush()
    except SQLAlchemyError as exc:
        logger.error("Closure log write failed (%s %s %d-%02d): %s", action, account_id, year, month, exc)
        raise StorageError("Could not write the period closure log") from exc

    logger.info("%s account=%s period=%d-%02d actor=%s", action, account_id, year, month, actor_id)
    return entry


async def history(
    db: AsyncSession,
    account_id: uuid.UUID | None = None,
    limit: int = 200,
) -> list[PeriodClosureLog]:
    """Closure log entries, newest first."""
    stmt = select(PeriodClosureLog)
    if account_id is not None:
        stmt = stmt.where(PeriodClosureLog.account_id == account_id)
    stmt = stmt.order_by(PeriodClosureLog.created_at.desc()).limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


def serialize_entry(entry: PeriodClosureLog) -> dict:
    details: Any = entry.details
    if details:
        try:
            details = json.loads(details)
        except ValueError:
            # Free-text details are returned as stored.
            details = entry.details
    return {
        "id": str(entry.id),
        "action": entry.action,
        "account_id": str(entry.account_id),
        "month": entry.month,
        "year": entry.year,
        "actor_id": str(entry.actor_id) if entry.actor_id else None,
        "details": details,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }
