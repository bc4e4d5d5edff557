"""Cheque lifecycle: pending -> cleared | cancelled, cleared -> cancelled.

A cheque transaction is recorded ``pending`` with its legs but no balance
effect.  Clearing applies the legs and completes the transaction; cancelling
reverses them if they had been applied and cancels the transaction.
"""
from __future__ import annotations

import datetime
import logging
import uuid
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.exceptions import InvalidStateError, NotFoundError, ValidationError
from iafa.middleware.auth import write_audit_log
from iafa.models.base import utcnow
from iafa.models.transaction import Cheque, Transaction
from iafa.services.locks import account_writer
from iafa.services.period_service import check_lock
from iafa.services.transaction_service import (
    TransactionService,
    apply_legs,
    legs_of,
    recalculate_for,
    serialize_cheque,
)

logger = logging.getLogger(__name__)


class ChequeService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.transactions = TransactionService(db)

    async def get(self, cheque_id: uuid.UUID) -> Cheque:
        result = await self.db.execute(
            select(Cheque)
            .where(Cheque.id == cheque_id)
            .execution_options(populate_existing=True)
        )
        cheque = result.scalar_one_or_none()
        if cheque is None:
            raise NotFoundError("Cheque", cheque_id)
        return cheque

    async def list_cheques(
        self,
        *,
        account_id: uuid.UUID | None = None,
        ledger_head_id: uuid.UUID | None = None,
        status: str | None = None,
        due_before: datetime.date | None = None,
    ) -> dict:
        """Cheques with their transaction type and per-status totals."""
        stmt = select(Cheque, Transaction.tx_type, Transaction.amount).join(
            Transaction, Transaction.id == Cheque.transaction_id
        )
        if account_id:
            stmt = stmt.where(Cheque.account_id == account_id)
        if ledger_head_id:
            stmt = stmt.where(Cheque.ledger_head_id == ledger_head_id)
        if due_before:
            stmt = stmt.where(Cheque.due_date <= due_before)

        totals_stmt = (
            select(Cheque.status, func.count(Cheque.id), func.coalesce(func.sum(Transaction.amount), 0))
            .join(Transaction, Transaction.id == Cheque.transaction_id)
            .group_by(Cheque.status)
        )
        if account_id:
            totals_stmt = totals_stmt.where(Cheque.account_id == account_id)

        if status:
            stmt = stmt.where(Cheque.status == status)
        rows = (await self.db.execute(stmt.order_by(Cheque.due_date, Cheque.cheque_number))).all()

        totals = {s: {"count": 0, "amount": 0.0} for s in ("pending", "cleared", "cancelled")}
        for st, count, amount in (await self.db.execute(totals_stmt)).all():
            totals[st] = {"count": count, "amount": float(amount)}

        items = []
        for cheque, tx_type, amount in rows:
            entry = serialize_cheque(cheque)
            entry["tx_type"] = tx_type
            entry["amount"] = float(amount)
            items.append(entry)
        return {"items": items, "totals": totals}

    async def clear(
        self,
        cheque_id: uuid.UUID,
        user: dict[str, Any] | None,
        clearing_date: datetime.date | None = None,
        override_allowed: bool = False,
    ) -> Cheque:
        """Apply the deferred legs; outgoing legs must be covered by the bank balance."""
        cheque = await self.get(cheque_id)
        clearing_date = clearing_date or datetime.date.today()

        async with account_writer(self.db, cheque.account_id) as account:
            cheque = await self.get(cheque_id)
            if cheque.status != "pending":
                raise InvalidStateError(f"Cheque {cheque.cheque_number} is {cheque.status}, not pending")
            if clearing_date < cheque.issue_date:
                raise ValidationError(
                    f"Clearing date {clearing_date} is before the issue date {cheque.issue_date}"
                )
            tx = await self.transactions.get(cheque.transaction_id)
            overridden = check_lock(account, tx.tx_date, override_allowed)

            legs = legs_of(tx)
            await apply_legs(self.db, legs)
            tx.status = "completed"
            cheque.status = "cleared"
            cheque.clearing_date = clearing_date
            await self.db.flush()
            await recalculate_for(self.db, account.id, legs, tx.tx_date)

            await write_audit_log(
                self.db, user, "cheques.clear", "cheque", str(cheque.id),
                {"cheque_number": cheque.cheque_number, "transaction_id": tx.id,
                 "amount": tx.amount, "clearing_date": clearing_date,
                 "admin_override": overridden},
            )

        logger.info("Cleared cheque %s (%s)", cheque.cheque_number, cheque_id)
        return await self.get(cheque_id)

    async def cancel(
        self,
        cheque_id: uuid.UUID,
        user: dict[str, Any] | None,
        reason: str | None = None,
        override_allowed: bool = False,
    ) -> Cheque:
        """Cancel a cheque and its transaction, reversing a cleared cheque's effect.

        A pending cheque never touched the balances, so cancelling it is not
        subject to the period lock.
        """
        cheque = await self.get(cheque_id)

        async with account_writer(self.db, cheque.account_id) as account:
            cheque = await self.get(cheque_id)
            if cheque.status == "cancelled":
                raise InvalidStateError(f"Cheque {cheque.cheque_number} is already cancelled")
            tx = await self.transactions.get(cheque.transaction_id)

            was_cleared = cheque.status == "cleared"
            overridden = False
            legs = legs_of(tx)
            if was_cleared:
                overridden = check_lock(account, tx.tx_date, override_allowed)
                await apply_legs(self.db, legs, reverse=True)

            cheque.status = "cancelled"
            cheque.cancel_reason = reason
            tx.status = "cancelled"
            tx.cancelled_at = utcnow()
            await self.db.flush()
            if was_cleared:
                await recalculate_for(self.db, account.id, legs, tx.tx_date)

            await write_audit_log(
                self.db, user, "cheques.cancel", "cheque", str(cheque.id),
                {"cheque_number": cheque.cheque_number, "transaction_id": tx.id,
                 "reason": reason, "balances_reversed": was_cleared,
                 "admin_override": overridden},
            )

        logger.info("Cancelled cheque %s (%s)", cheque.cheque_number, cheque_id)
        return await self.get(cheque_id)
