"""Ledger configuration routes -- Accounts and Ledger Heads."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.exceptions import InvalidStateError, ValidationError
from iafa.middleware.auth import require_permission, write_audit_log
from iafa.models.ledger import HEAD_TYPES
from iafa.services import ledger_store, period_service
from iafa.services.locks import account_writer

router = APIRouter(prefix="/api", tags=["ledger"])


# ---------------------------------------------------------------------------
# ACCOUNTS
# ---------------------------------------------------------------------------

class AccountCreate(BaseModel):
    name: str
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip()


def _account_out(a) -> dict:
    return {
        "id": str(a.id),
        "name": a.name,
        "description": a.description,
        "last_closed_date": a.last_closed_date.isoformat() if a.last_closed_date else None,
    }


@router.get("/accounts")
async def list_accounts(
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.accounts.view")),
):
    from iafa.models.ledger import Account, LedgerHead

    head_counts = dict(
        (await db.execute(
            select(LedgerHead.account_id, func.count(LedgerHead.id)).group_by(LedgerHead.account_id)
        )).all()
    )
    result = await db.execute(select(Account).order_by(Account.name))
    items = [
        {**_account_out(a), "ledger_head_count": head_counts.get(a.id, 0)}
        for a in result.scalars().all()
    ]
    return {"success": True, "data": items, "total": len(items)}


@router.get("/accounts/{account_id}")
async def get_account(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.accounts.view")),
):
    account = await ledger_store.get_account(db, account_id)
    heads = await ledger_store.list_account_heads(db, account_id)
    open_period = await period_service.get_open_period(db, account_id)
    return {
        "success": True,
        "data": {
            **_account_out(account),
            "open_period": period_service.serialize_period(open_period),
            "ledger_heads": [_head_out(h) for h in heads],
        },
    }


@router.post("/accounts", status_code=201)
async def create_account(
    body: AccountCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.accounts.create")),
):
    from iafa.models.ledger import Account

    existing = await db.execute(select(Account.id).where(Account.name == body.name))
    if existing.scalar_one_or_none():
        raise ValidationError(f"Account {body.name!r} already exists")

    account = Account(name=body.name, description=body.description)
    db.add(account)
    await db.flush()
    await write_audit_log(db, _user, "ledger.account.create", "account", str(account.id), {"name": body.name})
    await db.commit()
    return {"success": True, "data": _account_out(account)}


class AccountUpdate(BaseModel):
    name: str | None = None
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip() if v else v


@router.put("/accounts/{account_id}")
async def update_account(
    account_id: uuid.UUID,
    body: AccountUpdate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.accounts.update")),
):
    from iafa.models.ledger import Account

    async with account_writer(db, account_id) as account:
        if body.name is not None and body.name != account.name:
            existing = await db.execute(select(Account.id).where(Account.name == body.name))
            if existing.scalar_one_or_none():
                raise ValidationError(f"Account {body.name!r} already exists")

        for field in ["name", "description"]:
            val = getattr(body, field, None)
            if val is not None:
                setattr(account, field, val)
        await db.flush()
        await write_audit_log(
            db, _user, "ledger.account.update", "account", str(account_id),
            body.model_dump(exclude_unset=True),
        )
        data = _account_out(account)
    return {"success": True, "data": data}


@router.delete("/accounts/{account_id}")
async def delete_account(
    account_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.accounts.delete")),
):
    async with account_writer(db, account_id) as account:
        refs = await ledger_store.account_references(db, account_id)
        if any(refs.values()):
            raise InvalidStateError(
                f"Account {account.name!r} has ledger history and cannot be deleted",
                **refs,
            )
        for head in await ledger_store.list_account_heads(db, account_id):
            await db.delete(head)
        await db.delete(account)
        await write_audit_log(
            db, _user, "ledger.account.delete", "account", str(account_id), {"name": account.name}
        )
    return {"success": True, "data": {"id": str(account_id), "deleted": True}}


# ---------------------------------------------------------------------------
# LEDGER HEADS
# ---------------------------------------------------------------------------

class LedgerHeadCreate(BaseModel):
    account_id: uuid.UUID
    name: str
    head_type: str
    description: str | None = None

    @field_validator("head_type")
    @classmethod
    def validate_head_type(cls, v):
        if v not in HEAD_TYPES:
            raise ValueError("Must be credit or debit")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip()


def _head_out(h) -> dict:
    return {
        "id": str(h.id),
        "account_id": str(h.account_id),
        "name": h.name,
        "head_type": h.head_type,
        "cash_balance": float(h.cash_balance),
        "bank_balance": float(h.bank_balance),
        "current_balance": float(h.current_balance),
        "description": h.description,
        "is_active": h.is_active,
    }


@router.get("/ledger-heads")
async def list_ledger_heads(
    account_id: uuid.UUID | None = Query(None),
    head_type: str | None = Query(None),
    is_active: bool | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.heads.view")),
):
    from iafa.models.ledger import LedgerHead

    stmt = select(LedgerHead)
    if account_id:
        stmt = stmt.where(LedgerHead.account_id == account_id)
    if head_type:
        stmt = stmt.where(LedgerHead.head_type == head_type)
    if is_active is not None:
        stmt = stmt.where(LedgerHead.is_active == is_active)
    result = await db.execute(stmt.order_by(LedgerHead.name))
    items = [_head_out(h) for h in result.scalars().all()]
    return {"success": True, "data": items, "total": len(items)}


@router.get("/ledger-heads/{head_id}")
async def get_ledger_head(
    head_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.heads.view")),
):
    head = await ledger_store.get_ledger_head(db, head_id)
    pending = await ledger_store.pending_outgoing_cheques(db, head_id)
    return {
        "success": True,
        "data": {
            **_head_out(head),
            "pending_outgoing_cheques": float(pending),
            "available_bank_balance": float(head.bank_balance - pending),
        },
    }


@router.post("/ledger-heads", status_code=201)
async def create_ledger_head(
    body: LedgerHeadCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.heads.create")),
):
    from iafa.models.ledger import LedgerHead

    account = await ledger_store.get_account(db, body.account_id)
    existing = await db.execute(
        select(LedgerHead.id).where(LedgerHead.account_id == account.id, LedgerHead.name == body.name)
    )
    if existing.scalar_one_or_none():
        raise ValidationError(f"Ledger head {body.name!r} already exists in {account.name!r}")

    head = LedgerHead(
        account_id=account.id,
        name=body.name,
        head_type=body.head_type,
        description=body.description,
        cash_balance=ledger_store.ZERO,
        bank_balance=ledger_store.ZERO,
        is_active=True,
    )
    db.add(head)
    await db.flush()
    await write_audit_log(
        db, _user, "ledger.head.create", "ledger_head", str(head.id),
        {"account_id": account.id, "name": body.name, "head_type": body.head_type},
    )
    await db.commit()
    return {"success": True, "data": _head_out(head)}


class LedgerHeadUpdate(BaseModel):
    name: str | None = None
    head_type: str | None = None
    description: str | None = None
    is_active: bool | None = None

    @field_validator("head_type")
    @classmethod
    def validate_head_type(cls, v):
        if v is not None and v not in HEAD_TYPES:
            raise ValueError("Must be credit or debit")
        return v

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Name cannot be blank")
        return v.strip() if v else v


@router.put("/ledger-heads/{head_id}")
async def update_ledger_head(
    head_id: uuid.UUID,
    body: LedgerHeadUpdate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.heads.update")),
):
    """Rename, retype, describe or (de)activate a head.

    Balances are not editable here; they only move through transactions.
    """
    from iafa.models.ledger import LedgerHead

    head = await ledger_store.get_ledger_head(db, head_id)
    async with account_writer(db, head.account_id):
        head = await ledger_store.get_ledger_head(db, head_id, for_update=True)
        if body.name is not None and body.name != head.name:
            existing = await db.execute(
                select(LedgerHead.id).where(
                    LedgerHead.account_id == head.account_id, LedgerHead.name == body.name
                )
            )
            if existing.scalar_one_or_none():
                raise ValidationError(f"Ledger head {body.name!r} already exists in this account")

        for field in ["name", "head_type", "description", "is_active"]:
            val = getattr(body, field, None)
            if val is not None:
                setattr(head, field, val)
        await db.flush()
        await write_audit_log(
            db, _user, "ledger.head.update", "ledger_head", str(head_id),
            body.model_dump(exclude_unset=True),
        )
        data = _head_out(head)
    return {"success": True, "data": data}


@router.delete("/ledger-heads/{head_id}")
async def delete_ledger_head(
    head_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("ledger.heads.delete")),
):
    head = await ledger_store.get_ledger_head(db, head_id)
    async with account_writer(db, head.account_id):
        head = await ledger_store.get_ledger_head(db, head_id, for_update=True)
        refs = await ledger_store.head_references(db, head_id)
        if any(refs.values()):
            raise InvalidStateError(
                f"Ledger head {head.name!r} is used by transactions or monthly balances; "
                "deactivate it instead",
                **refs,
            )
        await db.delete(head)
        await write_audit_log(
            db, _user, "ledger.head.delete", "ledger_head", str(head_id),
            {"account_id": head.account_id, "name": head.name},
        )
    return {"success": True, "data": {"id": str(head_id), "deleted": True}}
