"""Period closure controller.

Per account, at most one ``AccountingPeriod`` is open.  ``last_closed_date``
on the account is the lock boundary: anything dated on or before it is frozen
unless the acting user holds the override capability.  All state changes go
through the functions below, each under the account's writer lock, and each
leaves a ``PeriodClosureLog`` entry.
"""
from __future__ import annotations

import calendar
import datetime
import logging
import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.config import settings
from iafa.exceptions import (
    NoOpenPeriodError,
    NotCurrentPeriodError,
    PeriodLockedError,
    ValidationError,
)
from iafa.middleware.auth import actor_id, write_audit_log
from iafa.models.base import utcnow
from iafa.models.ledger import Account
from iafa.models.period import (
    CLOSE_PERIOD,
    FORCE_CLOSE_PERIOD,
    OPEN_PERIOD,
    REOPEN_PERIOD,
    AccountingPeriod,
)
from iafa.services import closure_log, snapshot_service
from iafa.services.ledger_store import get_ledger_head, list_account_heads
from iafa.services.locks import account_writer
from iafa.services.snapshot_service import month_end, next_month

logger = logging.getLogger(__name__)


def _validate_month(month: int, year: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month {month}", month=month)
    if not 1900 <= year <= 9999:
        raise ValidationError(f"Invalid year {year}", year=year)


# ---------------------------------------------------------------------------
# Lock checks
# ---------------------------------------------------------------------------


def is_locked(account: Account, on: datetime.date) -> bool:
    """True iff *on* falls on or before the account's last closed date."""
    return account.last_closed_date is not None and on <= account.last_closed_date


def check_lock(account: Account, on: datetime.date, override_allowed: bool = False) -> bool:
    """Raise ``PeriodLockedError`` for a locked date unless overriding.

    Returns True when the date was locked and the override was used.
    """
    if not is_locked(account, on):
        return False
    if not override_allowed:
        raise PeriodLockedError(on, account.last_closed_date)
    logger.warning(
        "Period lock override on account %s for %s (closed through %s)",
        account.id, on, account.last_closed_date,
    )
    return True


# ---------------------------------------------------------------------------
# Open period lookups
# ---------------------------------------------------------------------------


async def get_open_period(db: AsyncSession, account_id: uuid.UUID) -> AccountingPeriod | None:
    result = await db.execute(
        select(AccountingPeriod).where(
            AccountingPeriod.account_id == account_id,
            AccountingPeriod.status == "open",
        )
    )
    return result.scalar_one_or_none()


async def require_open_period(db: AsyncSession, account_id: uuid.UUID) -> AccountingPeriod:
    period = await get_open_period(db, account_id)
    if period is None:
        raise NoOpenPeriodError(f"Account {account_id} has no open period", account_id=account_id)
    return period


async def _get_or_create_period(
    db: AsyncSession, account_id: uuid.UUID, month: int, year: int
) -> AccountingPeriod:
    result = await db.execute(
        select(AccountingPeriod).where(
            AccountingPeriod.account_id == account_id,
            AccountingPeriod.month == month,
            AccountingPeriod.year == year,
        )
    )
    period = result.scalar_one_or_none()
    if period is None:
        period = AccountingPeriod(account_id=account_id, month=month, year=year, status="closed")
        db.add(period)
    return period


def serialize_period(period: AccountingPeriod | None) -> dict | None:
    if period is None:
        return None
    return {
        "id": str(period.id),
        "account_id": str(period.account_id),
        "month": period.month,
        "year": period.year,
        "status": period.status,
        "opened_at": period.opened_at.isoformat() if period.opened_at else None,
        "closed_at": period.closed_at.isoformat() if period.closed_at else None,
    }


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------


async def close_period(
    db: AsyncSession,
    account_id: uuid.UUID,
    month: int,
    year: int,
    user: dict[str, Any] | None,
) -> dict:
    """Close (month, year) for the account.

    The target must be the open period.  With no open period only the month
    right after the last closed date may be closed (any month, for an account
    never closed), which is how accounts are bootstrapped.  Skipping months
    needs them opened in turn.
    """
    _validate_month(month, year)
    end = month_end(year, month)

    async with account_writer(db, account_id) as account:
        lcd = account.last_closed_date
        if lcd is not None and end <= lcd:
            raise ValidationError(
                f"{year}-{month:02d} is already closed (closed through {lcd})",
                last_closed_date=lcd,
            )

        if lcd is not None and (year, month) != next_month(lcd.year, lcd.month):
            open_period = await require_open_period(db, account_id)
        else:
            open_period = await get_open_period(db, account_id)
        if open_period is not None and (open_period.year, open_period.month) != (year, month):
            raise NotCurrentPeriodError(
                f"{year}-{month:02d} is not the open period "
                f"({open_period.year}-{open_period.month:02d} is open)",
                open_month=open_period.month,
                open_year=open_period.year,
            )

        written = await snapshot_service.recalculate_account_month(db, account_id, year, month)
        ny, nm = next_month(year, month)
        prepared = await snapshot_service.ensure_month(db, account_id, ny, nm)

        period = open_period or await _get_or_create_period(db, account_id, month, year)
        period.status = "closed"
        period.closed_at = utcnow()
        period.closed_by = actor_id(user)

        previous = account.last_closed_date
        account.last_closed_date = end
        await db.flush()

        details = {
            "previous_last_closed_date": previous,
            "last_closed_date": end,
            "snapshots_recalculated": written,
            "next_month_rows_prepared": prepared,
            "bootstrap": open_period is None,
        }
        await closure_log.record(db, CLOSE_PERIOD, account_id, month, year, actor_id(user), details)
        await write_audit_log(
            db, user, "monthly_closure.period.close", "account", str(account_id), details
        )
        result = {
            "account_id": str(account_id),
            "month": month,
            "year": year,
            "last_closed_date": end.isoformat(),
            "period": serialize_period(period),
        }

    logger.info("Closed %d-%02d for account %s", year, month, account_id)
    return result


async def open_period(
    db: AsyncSession,
    account_id: uuid.UUID,
    month: int,
    year: int,
    user: dict[str, Any] | None,
) -> dict:
    """Make (month, year) the account's open period.

    An earlier open period is force-closed first.  Opening the period that is
    already open changes nothing.
    """
    _validate_month(month, year)

    async with account_writer(db, account_id) as account:
        lcd = account.last_closed_date
        if lcd is not None and month_end(year, month) <= lcd:
            raise ValidationError(
                f"{year}-{month:02d} is inside the closed range (closed through {lcd}); "
                "reopen it first",
                last_closed_date=lcd,
            )

        current = await get_open_period(db, account_id)
        if current is not None:
            if (current.year, current.month) == (year, month):
                return {
                    "account_id": str(account_id),
                    "period": serialize_period(current),
                    "force_closed": None,
                    "changed": False,
                }
            if (year, month) < (current.year, current.month):
                raise ValidationError(
                    f"Cannot open {year}-{month:02d}: it is earlier than the open period "
                    f"{current.year}-{current.month:02d}",
                )

        force_closed = None
        if current is not None:
            force_closed = await _force_close(db, account, current, user)

        period = await _get_or_create_period(db, account_id, month, year)
        period.status = "open"
        period.opened_at = utcnow()
        period.opened_by = actor_id(user)
        period.closed_at = None
        period.closed_by = None
        await db.flush()
        await snapshot_service.ensure_month(db, account_id, year, month)

        details = {"force_closed": force_closed}
        await closure_log.record(db, OPEN_PERIOD, account_id, month, year, actor_id(user), details)
        await write_audit_log(
            db, user, "monthly_closure.period.open", "account", str(account_id),
            {"month": month, "year": year, **details},
        )
        result = {
            "account_id": str(account_id),
            "period": serialize_period(period),
            "force_closed": force_closed,
            "changed": True,
        }

    logger.info("Opened %d-%02d for account %s", year, month, account_id)
    return result


async def _force_close(
    db: AsyncSession,
    account: Account,
    period: AccountingPeriod,
    user: dict[str, Any] | None,
) -> dict:
    """Close *period* because a later one is being opened."""
    await snapshot_service.recalculate_account_month(db, account.id, period.year, period.month)
    end = month_end(period.year, period.month)
    previous = account.last_closed_date
    if previous is None or end > previous:
        account.last_closed_date = end

    period.status = "closed"
    period.closed_at = utcnow()
    period.closed_by = actor_id(user)
    # The partial unique index allows one open row; release it before opening another.
    await db.flush()

    details = {
        "reason": "superseded by a later open period",
        "previous_last_closed_date": previous,
        "last_closed_date": account.last_closed_date,
    }
    await closure_log.record(
        db, FORCE_CLOSE_PERIOD, account.id, period.month, period.year, actor_id(user), details
    )
    logger.warning(
        "Force-closed %d-%02d for account %s", period.year, period.month, account.id
    )
    return {"month": period.month, "year": period.year, "last_closed_date": end.isoformat()}


async def reopen_period(
    db: AsyncSession,
    account_id: uuid.UUID,
    new_closing_date: datetime.date,
    user: dict[str, Any] | None,
) -> dict:
    """Move ``last_closed_date`` back to *new_closing_date*.

    Callers must hold the reopen capability; the route enforces it.
    """
    async with account_writer(db, account_id) as account:
        previous = account.last_closed_date
        if previous is None:
            raise ValidationError("Account has never been closed; nothing to reopen")
        if new_closing_date >= previous:
            raise ValidationError(
                f"New closing date {new_closing_date} must be earlier than the "
                f"current last closed date {previous}",
                last_closed_date=previous,
            )

        account.last_closed_date = new_closing_date
        await db.flush()

        warning = (
            f"Transactions dated {new_closing_date + datetime.timedelta(days=1)} "
            f"through {previous} can be created, edited and voided again."
        )
        details = {
            "previous_last_closed_date": previous,
            "new_last_closed_date": new_closing_date,
            "warning": warning,
        }
        await closure_log.record(
            db, REOPEN_PERIOD, account_id,
            new_closing_date.month, new_closing_date.year, actor_id(user), details,
        )
        await write_audit_log(
            db, user, "monthly_closure.period.reopen", "account", str(account_id), details
        )

    logger.warning(
        "Account %s reopened: last_closed_date %s -> %s", account_id, previous, new_closing_date
    )
    return {
        "account_id": str(account_id),
        "previous_last_closed_date": previous.isoformat(),
        "last_closed_date": new_closing_date.isoformat(),
        "warning": warning,
    }


async def recalculate(
    db: AsyncSession,
    account_id: uuid.UUID,
    from_date: datetime.date,
    user: dict[str, Any] | None,
    ledger_head_id: uuid.UUID | None = None,
) -> dict:
    """Manually recalculate snapshots from *from_date*'s month forward."""
    async with account_writer(db, account_id):
        if ledger_head_id is not None:
            await get_ledger_head(db, ledger_head_id, account_id=account_id)
            head_ids = [ledger_head_id]
        else:
            head_ids = [h.id for h in await list_account_heads(db, account_id)]
        written = await snapshot_service.recalculate_many(
            db, account_id, head_ids, from_date.year, from_date.month
        )
        await write_audit_log(
            db, user, "monthly_closure.recalculate", "account", str(account_id),
            {"from": from_date.isoformat(), "heads": len(head_ids), "rows": written},
        )
    return {"account_id": str(account_id), "heads": len(head_ids), "snapshots_written": written}


# ---------------------------------------------------------------------------
# Closure status
# ---------------------------------------------------------------------------


def _whole_months_between(start: datetime.date, end: datetime.date) -> int:
    months = (end.year - start.year) * 12 + (end.month - start.month)
    end_is_month_end = end.day == calendar.monthrange(end.year, end.month)[1]
    if end.day < start.day and not end_is_month_end:
        months -= 1
    return max(months, 0)


def classify(last_closed_date: datetime.date | None, today: datetime.date) -> str:
    if last_closed_date is None:
        return "never_closed"
    elapsed = _whole_months_between(last_closed_date, today)
    if elapsed <= settings.CLOSURE_CURRENT_MAX_MONTHS:
        return "current"
    if elapsed <= settings.CLOSURE_RECENT_MAX_MONTHS:
        return "recent"
    return "outdated"


async def closure_status(db: AsyncSession, today: datetime.date | None = None) -> list[dict]:
    today = today or datetime.date.today()
    accounts = (await db.execute(select(Account).order_by(Account.name))).scalars().all()
    open_periods = {
        p.account_id: p
        for p in (
            await db.execute(select(AccountingPeriod).where(AccountingPeriod.status == "open"))
        ).scalars().all()
    }
    rows = []
    for account in accounts:
        lcd = account.last_closed_date
        rows.append({
            "account_id": str(account.id),
            "account_name": account.name,
            "last_closed_date": lcd.isoformat() if lcd else None,
            "status": classify(lcd, today),
            "open_period": serialize_period(open_periods.get(account.id)),
        })
    return rows
