"""Transaction engine: credits, debits, edits and voids.

A transaction is stored as a header plus signed legs (``TransactionItem``)
that sum to zero:

* credit: ``+amount`` to the credited head, ``-amount`` to the external leg
  (money arriving from a donor or payer, no ledger head);
* debit: ``-part`` from each source head, ``+amount`` to the destination head.

Each leg also carries its signed cash and bank parts, which are exactly the
deltas applied to the head's running balances.  Cheque transactions are
stored ``pending`` and leave balances alone until the cheque clears (see
``cheque_service``).

Every write runs under ``account_writer`` and recalculates the snapshot chain
of every touched head before committing.
"""
from __future__ import annotations

import datetime
import decimal
import logging
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.exceptions import (
    InsufficientFundsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from iafa.middleware.auth import actor_id, write_audit_log
from iafa.models.base import utcnow
from iafa.models.donor import Booklet, Donor
from iafa.models.ledger import Account, LedgerHead
from iafa.models.transaction import CASH_TYPES, Cheque, Transaction, TransactionItem
from iafa.services import snapshot_service
from iafa.services.ledger_store import (
    ZERO,
    apply_delta,
    available_bank_balance,
    get_account,
    get_ledger_head,
    list_account_heads,
    to_money,
)
from iafa.services.locks import account_writer
from iafa.services.period_service import check_lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Leg:
    """One signed leg before it is persisted."""

    ledger_head_id: uuid.UUID | None
    amount: decimal.Decimal
    cash: decimal.Decimal
    bank: decimal.Decimal

    @property
    def side(self) -> str:
        return "+" if self.amount >= ZERO else "-"


# ---------------------------------------------------------------------------
# Amount handling
# ---------------------------------------------------------------------------


def resolve_split(
    cash_type: str,
    amount: Any,
    cash_amount: Any = None,
    bank_amount: Any = None,
) -> tuple[decimal.Decimal, decimal.Decimal, decimal.Decimal]:
    """Return ``(amount, cash_part, bank_part)`` for a cash type.

    ``multiple`` takes the split from the caller and requires it to add up to
    ``amount`` exactly.  Every other type derives it: ``cash`` goes to the
    cash part, everything else (cheques included) to the bank part.
    """
    if cash_type not in CASH_TYPES:
        raise ValidationError(f"Unknown cash_type {cash_type!r}", cash_type=cash_type)

    if cash_type == "multiple":
        if cash_amount is None or bank_amount is None:
            raise ValidationError("cash_amount and bank_amount are required for multiple payments")
        cash = to_money(cash_amount, "cash_amount")
        bank = to_money(bank_amount, "bank_amount")
        if cash < ZERO or bank < ZERO:
            raise ValidationError("cash_amount and bank_amount cannot be negative")
        total = cash + bank
        if amount is None:
            amount = total
        elif to_money(amount) != total:
            raise ValidationError(
                f"cash_amount + bank_amount ({total}) must equal amount ({to_money(amount)})",
                cash_amount=cash, bank_amount=bank, amount=amount,
            )
        amount = to_money(amount)
    else:
        if amount is None:
            raise ValidationError("amount is required")
        amount = to_money(amount)
        cash, bank = (amount, ZERO) if cash_type == "cash" else (ZERO, amount)

    if amount <= ZERO:
        raise ValidationError("amount must be greater than zero", amount=amount)
    return amount, cash, bank


def _items(legs: list[Leg]) -> list[TransactionItem]:
    total = sum((leg.amount for leg in legs), ZERO)
    if total != ZERO:
        raise ValidationError(f"Transaction legs do not balance (off by {total})")
    return [
        TransactionItem(
            ledger_head_id=leg.ledger_head_id,
            side=leg.side,
            amount=leg.amount,
            cash_amount=leg.cash,
            bank_amount=leg.bank,
        )
        for leg in legs
    ]


def legs_of(tx: Transaction) -> list[Leg]:
    return [
        Leg(item.ledger_head_id, item.amount, item.cash_amount, item.bank_amount)
        for item in tx.items
    ]


async def apply_legs(
    db: AsyncSession, legs: list[Leg], *, reverse: bool = False, check_funds: bool = True
) -> None:
    """Apply (or reverse) each leg's cash/bank parts to its head.

    Outgoing legs are refused when they would overdraw the head, unless
    ``check_funds`` is off; reversals never check.
    """
    sign = -1 if reverse else 1
    for leg in legs:
        if leg.ledger_head_id is None:
            continue
        await apply_delta(
            db,
            leg.ledger_head_id,
            sign * leg.cash,
            sign * leg.bank,
            require_non_negative=check_funds and not reverse and leg.amount < ZERO,
        )


async def recalculate_for(
    db: AsyncSession, account_id: uuid.UUID, legs: list[Leg], on: datetime.date
) -> int:
    return await snapshot_service.recalculate_many(
        db, account_id, (leg.ledger_head_id for leg in legs), on.year, on.month
    )


# ---------------------------------------------------------------------------
# Serialisation
# ---------------------------------------------------------------------------


def serialize_cheque(ch: Cheque | None) -> dict | None:
    if ch is None:
        return None
    return {
        "id": str(ch.id),
        "transaction_id": str(ch.transaction_id),
        "account_id": str(ch.account_id),
        "ledger_head_id": str(ch.ledger_head_id),
        "cheque_number": ch.cheque_number,
        "bank_name": ch.bank_name,
        "issue_date": ch.issue_date.isoformat(),
        "due_date": ch.due_date.isoformat(),
        "status": ch.status,
        "clearing_date": ch.clearing_date.isoformat() if ch.clearing_date else None,
        "description": ch.description,
        "cancel_reason": ch.cancel_reason,
    }


def serialize_transaction(tx: Transaction) -> dict:
    return {
        "id": str(tx.id),
        "account_id": str(tx.account_id),
        "ledger_head_id": str(tx.ledger_head_id),
        "ledger_head_name": tx.ledger_head.name if tx.ledger_head else None,
        "tx_type": tx.tx_type,
        "cash_type": tx.cash_type,
        "amount": float(tx.amount),
        "cash_amount": float(tx.cash_amount),
        "bank_amount": float(tx.bank_amount),
        "tx_date": tx.tx_date.isoformat(),
        "description": tx.description,
        "status": tx.status,
        "admin_override": tx.admin_override,
        "donor_id": str(tx.donor_id) if tx.donor_id else None,
        "donor_name": tx.donor.name if tx.donor else None,
        "booklet_id": str(tx.booklet_id) if tx.booklet_id else None,
        "booklet_no": tx.booklet.booklet_no if tx.booklet else None,
        "receipt_no": tx.receipt_no,
        "created_by": str(tx.created_by) if tx.created_by else None,
        "created_at": tx.created_at.isoformat() if tx.created_at else None,
        "cancelled_at": tx.cancelled_at.isoformat() if tx.cancelled_at else None,
        "items": [
            {
                "id": str(item.id),
                "ledger_head_id": str(item.ledger_head_id) if item.ledger_head_id else None,
                "side": item.side,
                "amount": float(item.amount),
                "cash_amount": float(item.cash_amount),
                "bank_amount": float(item.bank_amount),
            }
            for item in tx.items
        ],
        "cheque": serialize_cheque(tx.cheque),
    }


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class TransactionService:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------ lookups ------

    async def get(self, tx_id: uuid.UUID) -> Transaction:
        """Load a transaction with its legs and cheque freshly from the database."""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.id == tx_id)
            .execution_options(populate_existing=True)
        )
        tx = result.scalar_one_or_none()
        if tx is None:
            raise NotFoundError("Transaction", tx_id)
        return tx

    async def account_of(self, tx_id: uuid.UUID) -> uuid.UUID:
        result = await self.db.execute(
            select(Transaction.account_id).where(Transaction.id == tx_id)
        )
        account_id = result.scalar_one_or_none()
        if account_id is None:
            raise NotFoundError("Transaction", tx_id)
        return account_id

    async def _active_head(self, ledger_head_id: uuid.UUID, account: Account) -> LedgerHead:
        head = await get_ledger_head(self.db, ledger_head_id, account_id=account.id)
        if not head.is_active:
            raise ValidationError(f"Ledger head {head.name!r} is inactive", ledger_head_id=head.id)
        return head

    async def _donor(self, donor_id: uuid.UUID | None) -> Donor | None:
        if donor_id is None:
            return None
        donor = await self.db.get(Donor, donor_id)
        if donor is None:
            raise NotFoundError("Donor", donor_id)
        if not donor.is_active:
            raise ValidationError(f"Donor {donor.name!r} is inactive", donor_id=donor_id)
        return donor

    async def _claim_receipt(
        self, booklet_id: uuid.UUID | None, receipt_no: int | None
    ) -> Booklet | None:
        """Consume one unused page of an active booklet."""
        if booklet_id is None and receipt_no is None:
            return None
        if booklet_id is None or receipt_no is None:
            raise ValidationError("booklet_id and receipt_no must be given together")

        result = await self.db.execute(
            select(Booklet)
            .where(Booklet.id == booklet_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        booklet = result.scalar_one_or_none()
        if booklet is None:
            raise NotFoundError("Booklet", booklet_id)
        if not booklet.is_active:
            raise ValidationError(f"Booklet {booklet.booklet_no} is inactive")
        if not booklet.start_no <= receipt_no <= booklet.end_no:
            raise ValidationError(
                f"Receipt {receipt_no} is outside booklet {booklet.booklet_no} "
                f"({booklet.start_no}-{booklet.end_no})",
            )
        if receipt_no not in (booklet.pages_left or []):
            raise ValidationError(
                f"Receipt {receipt_no} of booklet {booklet.booklet_no} is already used",
                receipt_no=receipt_no,
            )
        # JSON column: assign a new list so the change is tracked.
        booklet.pages_left = [p for p in booklet.pages_left if p != receipt_no]
        return booklet

    @staticmethod
    def _cheque(cash_type: str, details: dict | None, tx_date: datetime.date) -> dict | None:
        if cash_type != "cheque":
            if details:
                raise ValidationError("Cheque details are only accepted for cheque payments")
            return None
        if not details or not details.get("cheque_number") or not details.get("bank_name"):
            raise ValidationError("cheque_number and bank_name are required for cheque payments")
        issue_date = details.get("issue_date") or tx_date
        due_date = details.get("due_date") or issue_date
        if due_date < issue_date:
            raise ValidationError("Cheque due_date cannot be before issue_date")
        return {
            "cheque_number": details["cheque_number"],
            "bank_name": details["bank_name"],
            "issue_date": issue_date,
            "due_date": due_date,
            "description": details.get("description"),
        }

    async def _debit_sources(
        self,
        account: Account,
        destination_id: uuid.UUID,
        sources: list[dict] | None,
        source_ledger_head_id: uuid.UUID | None,
        cash_type: str,
        amount: decimal.Decimal,
        cash: decimal.Decimal,
        bank: decimal.Decimal,
    ) -> list[Leg]:
        """Resolve the outgoing legs of a debit; their parts add up to the total."""
        if sources and source_ledger_head_id:
            raise ValidationError("Give either source_ledger_head_id or sources, not both")
        if not sources:
            if source_ledger_head_id is None:
                raise ValidationError("A source ledger head is required for debits")
            sources = [{
                "ledger_head_id": source_ledger_head_id,
                "amount": amount,
                "cash_amount": cash,
                "bank_amount": bank,
            }]

        legs: list[Leg] = []
        seen: set[uuid.UUID] = set()
        for src in sources:
            head = await self._active_head(src["ledger_head_id"], account)
            if head.id == destination_id:
                raise ValidationError("Source and destination ledger heads must differ")
            if head.id in seen:
                raise ValidationError(f"Ledger head {head.name!r} is listed twice as a source")
            seen.add(head.id)

            part = to_money(src.get("amount"), "sources.amount")
            if part <= ZERO:
                raise ValidationError("Each source amount must be greater than zero")
            if cash_type == "multiple":
                if src.get("cash_amount") is None or src.get("bank_amount") is None:
                    raise ValidationError(
                        "Each source needs cash_amount and bank_amount for multiple payments"
                    )
                part, part_cash, part_bank = resolve_split(
                    cash_type, part, src["cash_amount"], src["bank_amount"]
                )
            else:
                part, part_cash, part_bank = resolve_split(cash_type, part)
            legs.append(Leg(head.id, -part, -part_cash, -part_bank))

        if -sum((leg.amount for leg in legs), ZERO) != amount:
            raise ValidationError("Source amounts must add up to the transaction amount")
        if cash_type == "multiple" and (
            -sum((leg.cash for leg in legs), ZERO) != cash
            or -sum((leg.bank for leg in legs), ZERO) != bank
        ):
            raise ValidationError("Source cash/bank parts must add up to the transaction split")
        return legs

    async def _check_cheque_funds(self, legs: list[Leg]) -> None:
        for leg in legs:
            if leg.ledger_head_id is None or leg.amount >= ZERO:
                continue
            available = await available_bank_balance(self.db, leg.ledger_head_id)
            if available < -leg.amount:
                raise InsufficientFundsError(
                    f"Available bank balance {available} does not cover cheque of {-leg.amount}",
                    ledger_head_id=leg.ledger_head_id,
                    available=available,
                )

    # ------ create ------

    async def create_credit(
        self, data: dict[str, Any], user: dict | None, override_allowed: bool = False
    ) -> Transaction:
        db = self.db
        async with account_writer(db, data["account_id"]) as account:
            head = await self._active_head(data["ledger_head_id"], account)
            cash_type = data["cash_type"]
            amount, cash, bank = resolve_split(
                cash_type, data.get("amount"), data.get("cash_amount"), data.get("bank_amount")
            )
            tx_date = data["tx_date"]
            overridden = check_lock(account, tx_date, override_allowed)
            donor = await self._donor(data.get("donor_id"))
            booklet = await self._claim_receipt(data.get("booklet_id"), data.get("receipt_no"))
            cheque = self._cheque(cash_type, data.get("cheque"), tx_date)

            legs = [Leg(head.id, amount, cash, bank), Leg(None, -amount, -cash, -bank)]
            tx = Transaction(
                account_id=account.id,
                ledger_head_id=head.id,
                donor_id=donor.id if donor else None,
                booklet_id=booklet.id if booklet else None,
                receipt_no=data.get("receipt_no") if booklet else None,
                tx_type="credit",
                cash_type=cash_type,
                amount=amount,
                cash_amount=cash,
                bank_amount=bank,
                tx_date=tx_date,
                description=data.get("description"),
                status="pending" if cheque else "completed",
                admin_override=overridden,
                created_by=actor_id(user),
            )
            tx.items = _items(legs)
            if cheque:
                tx.cheque = Cheque(
                    account_id=account.id, ledger_head_id=head.id, status="pending", **cheque
                )
            db.add(tx)
            await db.flush()

            if tx.status == "completed":
                await apply_legs(db, legs)
                await recalculate_for(db, account.id, legs, tx_date)

            await write_audit_log(
                db, user, "transactions.credit.create", "transaction", str(tx.id),
                {"amount": amount, "cash_type": cash_type, "tx_date": tx_date,
                 "ledger_head": head.name, "admin_override": overridden},
            )
            tx_id = tx.id

        logger.info("Credit %s of %s to head %s on %s", tx_id, amount, head.name, tx_date)
        return await self.get(tx_id)

    async def create_debit(
        self, data: dict[str, Any], user: dict | None, override_allowed: bool = False
    ) -> Transaction:
        db = self.db
        async with account_writer(db, data["account_id"]) as account:
            destination = await self._active_head(data["ledger_head_id"], account)
            cash_type = data["cash_type"]
            amount, cash, bank = resolve_split(
                cash_type, data.get("amount"), data.get("cash_amount"), data.get("bank_amount")
            )
            tx_date = data["tx_date"]
            overridden = check_lock(account, tx_date, override_allowed)
            sources = await self._debit_sources(
                account, destination.id, data.get("sources"), data.get("source_ledger_head_id"),
                cash_type, amount, cash, bank,
            )
            cheque = self._cheque(cash_type, data.get("cheque"), tx_date)
            if cheque:
                await self._check_cheque_funds(sources)

            legs = sources + [Leg(destination.id, amount, cash, bank)]
            tx = Transaction(
                account_id=account.id,
                ledger_head_id=destination.id,
                tx_type="debit",
                cash_type=cash_type,
                amount=amount,
                cash_amount=cash,
                bank_amount=bank,
                tx_date=tx_date,
                description=data.get("description"),
                status="pending" if cheque else "completed",
                admin_override=overridden,
                created_by=actor_id(user),
            )
            tx.items = _items(legs)
            if cheque:
                tx.cheque = Cheque(
                    account_id=account.id,
                    ledger_head_id=sources[0].ledger_head_id,
                    status="pending",
                    **cheque,
                )
            db.add(tx)
            await db.flush()

            if tx.status == "completed":
                await apply_legs(db, legs)
                await recalculate_for(db, account.id, legs, tx_date)

            await write_audit_log(
                db, user, "transactions.debit.create", "transaction", str(tx.id),
                {"amount": amount, "cash_type": cash_type, "tx_date": tx_date,
                 "destination": destination.name,
                 "sources": [str(leg.ledger_head_id) for leg in sources],
                 "admin_override": overridden},
            )
            tx_id = tx.id

        logger.info("Debit %s of %s to head %s on %s", tx_id, amount, destination.name, tx_date)
        return await self.get(tx_id)

    # ------ update ------

    async def update(
        self,
        tx_id: uuid.UUID,
        data: dict[str, Any],
        user: dict | None,
        override_allowed: bool = False,
    ) -> Transaction:
        """Edit a completed, non-cheque transaction.

        Both the old and the new date must be writable.  Booklet and receipt
        number cannot change.
        """
        db = self.db
        account_id = await self.account_of(tx_id)
        async with account_writer(db, account_id) as account:
            tx = await self.get(tx_id)
            if tx.status != "completed":
                raise InvalidStateError(
                    f"Only completed transactions can be edited (status is {tx.status})"
                )
            if tx.cheque is not None:
                raise InvalidStateError(
                    "Cheque transactions cannot be edited; cancel the cheque and re-enter it"
                )

            old_date = tx.tx_date
            new_date = data.get("tx_date") or old_date
            old_overridden = check_lock(account, old_date, override_allowed)
            new_overridden = check_lock(account, new_date, override_allowed)

            cash_type = data.get("cash_type") or tx.cash_type
            if cash_type == "cheque":
                raise ValidationError("A transaction cannot be converted to a cheque payment")
            amount_in = data.get("amount")
            cash_in = data.get("cash_amount")
            bank_in = data.get("bank_amount")
            if cash_type == "multiple":
                if cash_in is None and bank_in is None and amount_in is None:
                    amount_in = tx.amount
                if cash_in is None:
                    cash_in = tx.cash_amount if tx.cash_type == "multiple" else None
                if bank_in is None:
                    bank_in = tx.bank_amount if tx.cash_type == "multiple" else None
            elif amount_in is None:
                amount_in = tx.amount
            amount, cash, bank = resolve_split(cash_type, amount_in, cash_in, bank_in)

            old_legs = legs_of(tx)
            head = await self._active_head(data.get("ledger_head_id") or tx.ledger_head_id, account)
            if tx.tx_type == "credit":
                new_legs = [Leg(head.id, amount, cash, bank), Leg(None, -amount, -cash, -bank)]
                if "donor_id" in data and data["donor_id"] != tx.donor_id:
                    donor = await self._donor(data["donor_id"])
                    tx.donor_id = donor.id if donor else None
            else:
                sources = data.get("sources")
                source_id = data.get("source_ledger_head_id")
                old_sources = [leg for leg in old_legs if leg.amount < ZERO and leg.ledger_head_id]
                if not sources and source_id is None:
                    if len(old_sources) != 1:
                        raise ValidationError(
                            "This debit has several sources; restate them with the new amounts"
                        )
                    source_id = old_sources[0].ledger_head_id
                source_legs = await self._debit_sources(
                    account, head.id, sources, source_id, cash_type, amount, cash, bank
                )
                new_legs = source_legs + [Leg(head.id, amount, cash, bank)]

            await apply_legs(db, old_legs, reverse=True)
            await apply_legs(db, new_legs)

            before = {
                "amount": tx.amount, "cash_type": tx.cash_type, "tx_date": old_date,
                "ledger_head_id": tx.ledger_head_id,
            }
            tx.items = _items(new_legs)
            tx.ledger_head_id = head.id
            tx.cash_type = cash_type
            tx.amount = amount
            tx.cash_amount = cash
            tx.bank_amount = bank
            tx.tx_date = new_date
            if "description" in data and data["description"] is not None:
                tx.description = data["description"]
            tx.admin_override = tx.admin_override or old_overridden or new_overridden
            await db.flush()

            start = min(old_date, new_date)
            await recalculate_for(db, account.id, old_legs + new_legs, start)
            if (new_date.year, new_date.month) != (start.year, start.month):
                # A later target month may not have a snapshot row yet.
                await recalculate_for(db, account.id, new_legs, new_date)

            await write_audit_log(
                db, user, "transactions.update", "transaction", str(tx.id),
                {"before": before,
                 "after": {"amount": amount, "cash_type": cash_type, "tx_date": new_date,
                           "ledger_head_id": head.id},
                 "admin_override": old_overridden or new_overridden},
            )

        logger.info("Updated transaction %s", tx_id)
        return await self.get(tx_id)

    # ------ void ------

    async def void(
        self,
        tx_id: uuid.UUID,
        user: dict | None,
        override_allowed: bool = False,
        reason: str | None = None,
    ) -> Transaction:
        """Cancel a transaction and reverse whatever it applied.

        Voiding twice is an error.  A used receipt page stays used.
        """
        db = self.db
        account_id = await self.account_of(tx_id)
        async with account_writer(db, account_id) as account:
            tx = await self.get(tx_id)
            if tx.status == "cancelled":
                raise InvalidStateError(f"Transaction {tx_id} is already voided")
            overridden = check_lock(account, tx.tx_date, override_allowed)

            legs = legs_of(tx)
            was_applied = tx.status == "completed"
            if was_applied:
                await apply_legs(db, legs, reverse=True)
            if tx.cheque is not None and tx.cheque.status != "cancelled":
                tx.cheque.status = "cancelled"
                tx.cheque.cancel_reason = reason or "Transaction voided"

            tx.status = "cancelled"
            tx.cancelled_at = utcnow()
            await db.flush()
            if was_applied:
                await recalculate_for(db, account.id, legs, tx.tx_date)

            await write_audit_log(
                db, user, "transactions.void", "transaction", str(tx.id),
                {"amount": tx.amount, "tx_date": tx.tx_date, "reason": reason,
                 "balances_reversed": was_applied, "admin_override": overridden},
            )

        logger.info("Voided transaction %s", tx_id)
        return await self.get(tx_id)

    # ------ queries ------

    def _filtered(self, stmt, filters: dict[str, Any]):
        if filters.get("account_id"):
            stmt = stmt.where(Transaction.account_id == filters["account_id"])
        if filters.get("ledger_head_id"):
            touching = select(TransactionItem.transaction_id).where(
                TransactionItem.ledger_head_id == filters["ledger_head_id"]
            )
            stmt = stmt.where(
                or_(
                    Transaction.ledger_head_id == filters["ledger_head_id"],
                    Transaction.id.in_(touching),
                )
            )
        if filters.get("donor_id"):
            stmt = stmt.where(Transaction.donor_id == filters["donor_id"])
        if filters.get("tx_type"):
            stmt = stmt.where(Transaction.tx_type == filters["tx_type"])
        if filters.get("cash_type"):
            stmt = stmt.where(Transaction.cash_type == filters["cash_type"])
        if filters.get("date_from"):
            stmt = stmt.where(Transaction.tx_date >= filters["date_from"])
        if filters.get("date_to"):
            stmt = stmt.where(Transaction.tx_date <= filters["date_to"])
        return stmt

    async def list_transactions(
        self,
        *,
        status: str | None = None,
        page: int = 1,
        page_size: int = 50,
        **filters: Any,
    ) -> dict:
        """Filtered, paginated transactions plus per-status counters."""
        stmt = self._filtered(select(Transaction), filters)
        if status:
            stmt = stmt.where(Transaction.status == status)

        total = (
            await self.db.execute(select(func.count()).select_from(stmt.subquery()))
        ).scalar_one()
        rows = (
            await self.db.execute(
                stmt.order_by(Transaction.tx_date.desc(), Transaction.created_at.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            )
        ).scalars().all()

        summary_stmt = self._filtered(
            select(
                Transaction.status,
                Transaction.tx_type,
                func.count(Transaction.id),
                func.coalesce(func.sum(Transaction.amount), 0),
            ),
            filters,
        ).group_by(Transaction.status, Transaction.tx_type)
        summary = {
            "completed": 0, "pending": 0, "cancelled": 0,
            "total_credit": 0.0, "total_debit": 0.0,
        }
        for st, tx_type, count, amount in (await self.db.execute(summary_stmt)).all():
            summary[st] = summary.get(st, 0) + count
            if st == "completed":
                summary[f"total_{tx_type}"] += float(amount)

        return {
            "items": [serialize_transaction(tx) for tx in rows],
            "total": total,
            "page": page,
            "page_size": page_size,
            "summary": summary,
        }

    async def balances_for_date(self, account_id: uuid.UUID, on: datetime.date) -> dict:
        """Per-head position for the month containing *on*.

        Heads without a snapshot in that month carry the latest earlier one.
        """
        await get_account(self.db, account_id)
        rows = []
        for head in await list_account_heads(self.db, account_id):
            snap = await snapshot_service.get_snapshot(self.db, head.id, on.year, on.month)
            if snap is not None:
                opening, receipts, payments = snap.opening_balance, snap.receipts, snap.payments
                closing, hand, bank = snap.closing_balance, snap.cash_in_hand, snap.cash_in_bank
            else:
                prev = await snapshot_service.previous_snapshot(
                    self.db, head.id, on.year, on.month
                )
                opening = closing = prev.closing_balance if prev else ZERO
                hand = prev.cash_in_hand if prev else ZERO
                bank = prev.cash_in_bank if prev else ZERO
                receipts = payments = ZERO
            rows.append({
                "ledger_head_id": str(head.id),
                "ledger_head_name": head.name,
                "head_type": head.head_type,
                "opening_balance": float(opening),
                "receipts": float(receipts),
                "payments": float(payments),
                "closing_balance": float(closing),
                "cash_in_hand": float(hand),
                "cash_in_bank": float(bank),
                "has_snapshot": snap is not None,
            })
        return {
            "account_id": str(account_id),
            "date": on.isoformat(),
            "month": on.month,
            "year": on.year,
            "balances": rows,
        }
