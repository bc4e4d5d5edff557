"""Monthly snapshot engine.

Each ledger head carries a chain of ``MonthlyLedgerBalance`` rows ordered by
(year, month).  A row's opening balance is the closing balance of the latest
earlier row, and its cash/bank month-end positions carry forward the same
way.  ``recalculate_from`` rewrites one row from the transactions dated in
its month and then walks forward through every later row that already
exists, so a backdated change is reflected in all subsequent months before
the write that caused it returns.

Only ``completed`` transactions count.  Pending cheques have no balance effect
yet and cancelled transactions have been reversed.
"""
from __future__ import annotations

import calendar
import datetime
import decimal
import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.models.ledger import LedgerHead
from iafa.models.snapshot import ZERO, MonthlyLedgerBalance
from iafa.models.transaction import Transaction, TransactionItem
from iafa.services.ledger_store import list_account_heads

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def month_bounds(year: int, month: int) -> tuple[datetime.date, datetime.date]:
    last_day = calendar.monthrange(year, month)[1]
    return datetime.date(year, month, 1), datetime.date(year, month, last_day)


def month_end(year: int, month: int) -> datetime.date:
    return month_bounds(year, month)[1]


def next_month(year: int, month: int) -> tuple[int, int]:
    return (year + 1, 1) if month == 12 else (year, month + 1)


def previous_month(year: int, month: int) -> tuple[int, int]:
    return (year - 1, 12) if month == 1 else (year, month - 1)


def _before(year: int, month: int):
    return or_(
        MonthlyLedgerBalance.year < year,
        and_(MonthlyLedgerBalance.year == year, MonthlyLedgerBalance.month < month),
    )


def _after(year: int, month: int):
    return or_(
        MonthlyLedgerBalance.year > year,
        and_(MonthlyLedgerBalance.year == year, MonthlyLedgerBalance.month > month),
    )


def _money(value) -> decimal.Decimal:
    if value is None:
        return ZERO
    return decimal.Decimal(str(value)).quantize(decimal.Decimal("0.01"))


# ---------------------------------------------------------------------------
# Chain navigation
# ---------------------------------------------------------------------------


async def previous_snapshot(
    db: AsyncSession, ledger_head_id: uuid.UUID, year: int, month: int
) -> MonthlyLedgerBalance | None:
    result = await db.execute(
        select(MonthlyLedgerBalance)
        .where(MonthlyLedgerBalance.ledger_head_id == ledger_head_id, _before(year, month))
        .order_by(MonthlyLedgerBalance.year.desc(), MonthlyLedgerBalance.month.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _next_snapshot(
    db: AsyncSession, ledger_head_id: uuid.UUID, year: int, month: int
) -> MonthlyLedgerBalance | None:
    result = await db.execute(
        select(MonthlyLedgerBalance)
        .where(MonthlyLedgerBalance.ledger_head_id == ledger_head_id, _after(year, month))
        .order_by(MonthlyLedgerBalance.year, MonthlyLedgerBalance.month)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def get_snapshot(
    db: AsyncSession, ledger_head_id: uuid.UUID, year: int, month: int
) -> MonthlyLedgerBalance | None:
    result = await db.execute(
        select(MonthlyLedgerBalance).where(
            MonthlyLedgerBalance.ledger_head_id == ledger_head_id,
            MonthlyLedgerBalance.year == year,
            MonthlyLedgerBalance.month == month,
        )
    )
    return result.scalar_one_or_none()


async def latest_snapshot(db: AsyncSession, ledger_head_id: uuid.UUID) -> MonthlyLedgerBalance | None:
    result = await db.execute(
        select(MonthlyLedgerBalance)
        .where(MonthlyLedgerBalance.ledger_head_id == ledger_head_id)
        .order_by(MonthlyLedgerBalance.year.desc(), MonthlyLedgerBalance.month.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _month_flows(
    db: AsyncSession, ledger_head_id: uuid.UUID, year: int, month: int
) -> tuple[decimal.Decimal, decimal.Decimal, decimal.Decimal, decimal.Decimal]:
    """Return (receipts, payments, cash_net, bank_net) for one head and month."""
    first, last = month_bounds(year, month)
    result = await db.execute(
        select(TransactionItem.amount, TransactionItem.cash_amount, TransactionItem.bank_amount)
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .where(
            TransactionItem.ledger_head_id == ledger_head_id,
            Transaction.status == "completed",
            Transaction.tx_date >= first,
            Transaction.tx_date <= last,
        )
    )
    receipts = payments = cash_net = bank_net = ZERO
    for amount, cash_amount, bank_amount in result.all():
        amount = _money(amount)
        if amount >= ZERO:
            receipts += amount
        else:
            payments -= amount
        cash_net += _money(cash_amount)
        bank_net += _money(bank_amount)
    return receipts, payments, cash_net, bank_net


# ---------------------------------------------------------------------------
# Recalculation
# ---------------------------------------------------------------------------


async def recalculate_from(
    db: AsyncSession,
    account_id: uuid.UUID,
    ledger_head_id: uuid.UUID,
    year: int,
    month: int,
) -> int:
    """Rewrite the (year, month) snapshot and every later one in the chain.

    Returns the number of snapshot rows written.
    """
    previous = await previous_snapshot(db, ledger_head_id, year, month)
    start = (year, month)
    written = 0

    while True:
        opening = _money(previous.closing_balance) if previous else ZERO
        hand = _money(previous.cash_in_hand) if previous else ZERO
        bank = _money(previous.cash_in_bank) if previous else ZERO
        receipts, payments, cash_net, bank_net = await _month_flows(
            db, ledger_head_id, year, month
        )

        snapshot = await get_snapshot(db, ledger_head_id, year, month)
        if snapshot is None:
            snapshot = MonthlyLedgerBalance(
                account_id=account_id,
                ledger_head_id=ledger_head_id,
                month=month,
                year=year,
            )
            db.add(snapshot)

        snapshot.opening_balance = opening
        snapshot.receipts = receipts
        snapshot.payments = payments
        snapshot.closing_balance = opening + receipts - payments
        snapshot.cash_in_hand = hand + cash_net
        snapshot.cash_in_bank = bank + bank_net
        await db.flush()
        written += 1

        following = await _next_snapshot(db, ledger_head_id, year, month)
        if following is None:
            break
        previous = snapshot
        year, month = following.year, following.month

    logger.debug(
        "Recalculated %d snapshot(s) for head %s from %04d-%02d",
        written, ledger_head_id, *start,
    )
    return written


async def recalculate_many(
    db: AsyncSession,
    account_id: uuid.UUID,
    ledger_head_ids: Iterable[uuid.UUID | None],
    year: int,
    month: int,
) -> int:
    """Recalculate several heads from the same month; ``None`` ids are skipped."""
    written = 0
    for head_id in sorted({h for h in ledger_head_ids if h is not None}, key=str):
        written += await recalculate_from(db, account_id, head_id, year, month)
    return written


async def recalculate_account_month(
    db: AsyncSession, account_id: uuid.UUID, year: int, month: int
) -> int:
    heads = await list_account_heads(db, account_id)
    return await recalculate_many(db, account_id, (h.id for h in heads), year, month)


async def ensure_month(
    db: AsyncSession, account_id: uuid.UUID, year: int, month: int
) -> int:
    """Create the (year, month) row for every head of the account that lacks one."""
    created = 0
    for head in await list_account_heads(db, account_id):
        if await get_snapshot(db, head.id, year, month) is None:
            await recalculate_from(db, account_id, head.id, year, month)
            created += 1
    return created


async def rebuild_chain(db: AsyncSession, head: LedgerHead) -> tuple[MonthlyLedgerBalance | None, int]:
    """Recalculate a head's whole chain from its earliest month.

    Months that hold completed transactions but have no snapshot row get one
    first, so the rebuilt chain covers every posting.  Returns the latest
    snapshot afterwards and the number of rows that had to be added.
    """
    tx_dates = (
        await db.execute(
            select(Transaction.tx_date)
            .join(TransactionItem, TransactionItem.transaction_id == Transaction.id)
            .where(
                TransactionItem.ledger_head_id == head.id,
                Transaction.status == "completed",
            )
            .distinct()
        )
    ).scalars().all()
    tx_months = {(d.year, d.month) for d in tx_dates}
    existing = {
        (y, m)
        for y, m in (
            await db.execute(
                select(MonthlyLedgerBalance.year, MonthlyLedgerBalance.month).where(
                    MonthlyLedgerBalance.ledger_head_id == head.id
                )
            )
        ).all()
    }

    missing = sorted(tx_months - existing)
    for year, month in missing:
        db.add(MonthlyLedgerBalance(
            account_id=head.account_id, ledger_head_id=head.id, month=month, year=year,
        ))
    if missing:
        await db.flush()
        logger.warning("Head %s was missing snapshots for %s", head.id, missing)

    months = tx_months | existing
    if not months:
        return None, 0
    year, month = min(months)
    await recalculate_from(db, head.account_id, head.id, year, month)
    return await latest_snapshot(db, head.id), len(missing)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


async def list_snapshots(
    db: AsyncSession,
    *,
    account_id: uuid.UUID | None = None,
    ledger_head_id: uuid.UUID | None = None,
    month: int | None = None,
    year: int | None = None,
) -> list[MonthlyLedgerBalance]:
    stmt = select(MonthlyLedgerBalance)
    if account_id is not None:
        stmt = stmt.where(MonthlyLedgerBalance.account_id == account_id)
    if ledger_head_id is not None:
        stmt = stmt.where(MonthlyLedgerBalance.ledger_head_id == ledger_head_id)
    if month is not None:
        stmt = stmt.where(MonthlyLedgerBalance.month == month)
    if year is not None:
        stmt = stmt.where(MonthlyLedgerBalance.year == year)
    stmt = stmt.order_by(MonthlyLedgerBalance.year, MonthlyLedgerBalance.month)
    result = await db.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


def serialize_snapshot(s: MonthlyLedgerBalance) -> dict:
    return {
        "id": str(s.id),
        "account_id": str(s.account_id),
        "ledger_head_id": str(s.ledger_head_id),
        "ledger_head_name": s.ledger_head.name if s.ledger_head else None,
        "month": s.month,
        "year": s.year,
        "opening_balance": float(s.opening_balance),
        "receipts": float(s.receipts),
        "payments": float(s.payments),
        "closing_balance": float(s.closing_balance),
        "cash_in_hand": float(s.cash_in_hand),
        "cash_in_bank": float(s.cash_in_bank),
    }
