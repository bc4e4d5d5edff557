"""Ledger store: accounts, ledger heads and their running cash/bank balances."""
from __future__ import annotations

import decimal
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.exceptions import InsufficientFundsError, NotFoundError, ValidationError
from iafa.models.ledger import Account, LedgerHead
from iafa.models.transaction import Transaction, TransactionItem

CENT = decimal.Decimal("0.01")
ZERO = decimal.Decimal("0.00")


def to_money(value: Any, field: str = "amount") -> decimal.Decimal:
    """Coerce *value* to a 2-place Decimal, rejecting finer precision."""
    try:
        amount = value if isinstance(value, decimal.Decimal) else decimal.Decimal(str(value))
    except (decimal.InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} is not a valid amount", field=field) from exc
    if not amount.is_finite():
        raise ValidationError(f"{field} is not a valid amount", field=field)
    if amount != amount.quantize(CENT):
        raise ValidationError(
            f"{field} may have at most 2 decimal places", field=field, value=amount
        )
    return amount.quantize(CENT)


def _money(value: Any) -> decimal.Decimal:
    # Values read back from the database; SQLite hands back floats on aggregates.
    if value is None:
        return ZERO
    return decimal.Decimal(str(value)).quantize(CENT)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_account(db: AsyncSession, account_id: uuid.UUID) -> Account:
    account = await db.get(Account, account_id)
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


async def lock_account(db: AsyncSession, account_id: uuid.UUID) -> Account:
    """Load the account row with ``FOR UPDATE`` and fresh column values."""
    result = await db.execute(
        select(Account)
        .where(Account.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


async def get_ledger_head(
    db: AsyncSession,
    ledger_head_id: uuid.UUID,
    *,
    account_id: uuid.UUID | None = None,
    for_update: bool = False,
) -> LedgerHead:
    """Return the ledger head, optionally checking it belongs to *account_id*."""
    stmt = select(LedgerHead).where(LedgerHead.id == ledger_head_id)
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    head = (await db.execute(stmt)).scalar_one_or_none()
    if head is None:
        raise NotFoundError("LedgerHead", ledger_head_id)
    if account_id is not None and head.account_id != account_id:
        raise ValidationError(
            f"Ledger head {head.name!r} does not belong to account {account_id}",
            ledger_head_id=ledger_head_id,
        )
    return head


async def list_account_heads(
    db: AsyncSession, account_id: uuid.UUID, *, active_only: bool = False
) -> list[LedgerHead]:
    stmt = select(LedgerHead).where(LedgerHead.account_id == account_id)
    if active_only:
        stmt = stmt.where(LedgerHead.is_active == True)  # noqa: E712
    result = await db.execute(
        stmt.order_by(LedgerHead.name).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def head_references(db: AsyncSession, ledger_head_id: uuid.UUID) -> dict[str, int]:
    """Count the transaction legs and snapshot rows that point at a head."""
    from iafa.models.snapshot import MonthlyLedgerBalance

    legs = await db.execute(
        select(func.count(TransactionItem.id)).where(
            TransactionItem.ledger_head_id == ledger_head_id
        )
    )
    snapshots = await db.execute(
        select(func.count(MonthlyLedgerBalance.id)).where(
            MonthlyLedgerBalance.ledger_head_id == ledger_head_id
        )
    )
    return {"transaction_items": legs.scalar_one(), "monthly_balances": snapshots.scalar_one()}


async def account_references(db: AsyncSession, account_id: uuid.UUID) -> dict[str, int]:
    """Count the transactions, snapshot rows and periods recorded on an account."""
    from iafa.models.period import AccountingPeriod
    from iafa.models.snapshot import MonthlyLedgerBalance

    counts = {}
    for key, model in (
        ("transactions", Transaction),
        ("monthly_balances", MonthlyLedgerBalance),
        ("periods", AccountingPeriod),
    ):
        result = await db.execute(
            select(func.count(model.id)).where(model.account_id == account_id)
        )
        counts[key] = result.scalar_one()
    return counts


# ---------------------------------------------------------------------------
# Balance mutation
# ---------------------------------------------------------------------------


async def apply_delta(
    db: AsyncSession,
    ledger_head_id: uuid.UUID,
    cash_delta: decimal.Decimal,
    bank_delta: decimal.Decimal,
    *,
    require_non_negative: bool = False,
) -> LedgerHead:
    """Adjust a head's cash and bank balances together.

    With ``require_non_negative`` the adjustment is refused, and nothing is
    modified, when either balance would drop below zero.
    """
    head = await get_ledger_head(db, ledger_head_id, for_update=True)
    new_cash = _money(head.cash_balance) + cash_delta
    new_bank = _money(head.bank_balance) + bank_delta

    if require_non_negative and (new_cash < ZERO or new_bank < ZERO):
        raise InsufficientFundsError(
            f"Insufficient balance in ledger head {head.name!r}",
            ledger_head_id=head.id,
            cash_balance=head.cash_balance,
            bank_balance=head.bank_balance,
            cash_requested=-cash_delta if cash_delta < 0 else ZERO,
            bank_requested=-bank_delta if bank_delta < 0 else ZERO,
        )

    head.cash_balance = new_cash
    head.bank_balance = new_bank
    await db.flush()
    return head


async def pending_outgoing_cheques(db: AsyncSession, ledger_head_id: uuid.UUID) -> decimal.Decimal:
    """Total of pending cheque debits drawn on *ledger_head_id*."""
    result = await db.execute(
        select(func.coalesce(func.sum(TransactionItem.amount), 0))
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .where(
            TransactionItem.ledger_head_id == ledger_head_id,
            TransactionItem.side == "-",
            Transaction.status == "pending",
            Transaction.cash_type == "cheque",
        )
    )
    return -_money(result.scalar_one())


async def available_bank_balance(db: AsyncSession, ledger_head_id: uuid.UUID) -> decimal.Decimal:
    """Bank balance minus cheques already written against it but not yet cleared."""
    head = await get_ledger_head(db, ledger_head_id)
    return _money(head.bank_balance) - await pending_outgoing_cheques(db, ledger_head_id)
