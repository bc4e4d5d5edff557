"""Balance reconciliation.

For every ledger head the snapshot chain is rebuilt from the transaction legs,
then three figures are compared:

* the running ``cash_balance`` / ``bank_balance`` on the head,
* the cash/bank totals of its completed legs,
* the month-end positions of its latest snapshot.

Snapshots are derived data and are always rewritten.  Running balances are
only corrected when ``fix`` is set; each correction leaves an audit entry.
"""
from __future__ import annotations

import decimal
import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.middleware.auth import write_audit_log
from iafa.models.audit import AuditLog
from iafa.models.ledger import Account, LedgerHead
from iafa.models.transaction import Transaction, TransactionItem
from iafa.services import snapshot_service
from iafa.services.ledger_store import ZERO, list_account_heads
from iafa.services.locks import account_writer

logger = logging.getLogger(__name__)

CENT = decimal.Decimal("0.01")


def _money(value: Any) -> decimal.Decimal:
    return decimal.Decimal(str(value or 0)).quantize(CENT)


async def _posted_totals(
    db: AsyncSession, ledger_head_id: uuid.UUID
) -> tuple[decimal.Decimal, decimal.Decimal]:
    result = await db.execute(
        select(
            func.coalesce(func.sum(TransactionItem.cash_amount), 0),
            func.coalesce(func.sum(TransactionItem.bank_amount), 0),
        )
        .join(Transaction, Transaction.id == TransactionItem.transaction_id)
        .where(
            TransactionItem.ledger_head_id == ledger_head_id,
            Transaction.status == "completed",
        )
    )
    cash, bank = result.one()
    return _money(cash), _money(bank)


async def _reconcile_head(
    db: AsyncSession, head: LedgerHead, fix: bool, user: dict | None
) -> dict | None:
    latest, added = await snapshot_service.rebuild_chain(db, head)
    cash, bank = await _posted_totals(db, head.id)
    running_cash, running_bank = _money(head.cash_balance), _money(head.bank_balance)
    snap_cash = _money(latest.cash_in_hand) if latest else ZERO
    snap_bank = _money(latest.cash_in_bank) if latest else ZERO

    balance_ok = (running_cash, running_bank) == (cash, bank)
    snapshot_ok = (snap_cash, snap_bank) == (cash, bank)
    if balance_ok and snapshot_ok and not added:
        return None

    entry = {
        "account_id": str(head.account_id),
        "ledger_head_id": str(head.id),
        "ledger_head_name": head.name,
        "running_cash": float(running_cash),
        "running_bank": float(running_bank),
        "posted_cash": float(cash),
        "posted_bank": float(bank),
        "snapshot_cash": float(snap_cash),
        "snapshot_bank": float(snap_bank),
        "snapshots_added": added,
        "balance_mismatch": not balance_ok,
        "fixed": False,
    }
    if fix and not balance_ok:
        head.cash_balance = cash
        head.bank_balance = bank
        await db.flush()
        entry["fixed"] = True
        await write_audit_log(
            db, user, "reconciliation.balance.fix", "ledger_head", str(head.id),
            {"cash": {"from": running_cash, "to": cash},
             "bank": {"from": running_bank, "to": bank}},
        )
        logger.warning(
            "Corrected head %s: cash %s -> %s, bank %s -> %s",
            head.id, running_cash, cash, running_bank, bank,
        )
    return entry


async def reconcile_balances(
    db: AsyncSession,
    *,
    fix: bool = False,
    account_id: uuid.UUID | None = None,
    user: dict | None = None,
) -> dict:
    """Reconcile every head, one account at a time under its writer lock."""
    stmt = select(Account.id).order_by(Account.name)
    if account_id is not None:
        stmt = stmt.where(Account.id == account_id)
    account_ids = (await db.execute(stmt)).scalars().all()

    checked = 0
    discrepancies: list[dict] = []
    for acc_id in account_ids:
        async with account_writer(db, acc_id):
            for head in await list_account_heads(db, acc_id):
                checked += 1
                entry = await _reconcile_head(db, head, fix, user)
                if entry is not None:
                    discrepancies.append(entry)
            await write_audit_log(
                db, user, "reconciliation.run", "account", str(acc_id),
                {"fix": fix, "discrepancies": sum(
                    1 for d in discrepancies if d["account_id"] == str(acc_id)
                )},
            )

    mismatched = [d for d in discrepancies if d["balance_mismatch"]]
    if mismatched:
        logger.warning("Reconciliation found %d balance mismatch(es)", len(mismatched))
    else:
        logger.info("Reconciliation checked %d head(s), balances agree", checked)
    return {
        "heads_checked": checked,
        "fix": fix,
        "discrepancies": discrepancies,
        "fixed": sum(1 for d in discrepancies if d["fixed"]),
    }


async def history(db: AsyncSession, limit: int = 100) -> list[dict]:
    result = await db.execute(
        select(AuditLog)
        .where(AuditLog.action.like("reconciliation.%"))
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
    )
    return [
        {
            "id": str(row.id),
            "action": row.action,
            "resource_type": row.resource_type,
            "resource_id": row.resource_id,
            "username": row.username,
            "details": row.details,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        for row in result.scalars().all()
    ]
