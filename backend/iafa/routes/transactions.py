"""Transaction routes -- credit and debit entry, edits, voids, listings."""
from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.middleware.auth import require_permission, resolve_override
from iafa.models.transaction import CASH_TYPES
from iafa.services.transaction_service import TransactionService, serialize_transaction

router = APIRouter(prefix="/api/transactions", tags=["transactions"])


# ---------------------------------------------------------------------------
# Pydantic Schemas
# ---------------------------------------------------------------------------

def _check_cash_type(v):
    if v is not None and v not in CASH_TYPES:
        raise ValueError(f"Must be one of: {', '.join(CASH_TYPES)}")
    return v


class ChequeIn(BaseModel):
    cheque_number: str
    bank_name: str
    issue_date: date | None = None
    due_date: date | None = None
    description: str | None = None


class CreditCreate(BaseModel):
    account_id: uuid.UUID
    ledger_head_id: uuid.UUID
    cash_type: str
    amount: Decimal | None = None
    cash_amount: Decimal | None = None
    bank_amount: Decimal | None = None
    tx_date: date
    description: str | None = None
    donor_id: uuid.UUID | None = None
    booklet_id: uuid.UUID | None = None
    receipt_no: int | None = None
    cheque: ChequeIn | None = None
    admin_override: bool = False

    @field_validator("cash_type")
    @classmethod
    def validate_cash_type(cls, v):
        return _check_cash_type(v)


class DebitSourceIn(BaseModel):
    ledger_head_id: uuid.UUID
    amount: Decimal
    cash_amount: Decimal | None = None
    bank_amount: Decimal | None = None


class DebitCreate(BaseModel):
    account_id: uuid.UUID
    ledger_head_id: uuid.UUID  # destination
    source_ledger_head_id: uuid.UUID | None = None
    sources: list[DebitSourceIn] | None = None
    cash_type: str
    amount: Decimal | None = None
    cash_amount: Decimal | None = None
    bank_amount: Decimal | None = None
    tx_date: date
    description: str | None = None
    cheque: ChequeIn | None = None
    admin_override: bool = False

    @field_validator("cash_type")
    @classmethod
    def validate_cash_type(cls, v):
        return _check_cash_type(v)


class TransactionUpdate(BaseModel):
    ledger_head_id: uuid.UUID | None = None
    source_ledger_head_id: uuid.UUID | None = None
    sources: list[DebitSourceIn] | None = None
    cash_type: str | None = None
    amount: Decimal | None = None
    cash_amount: Decimal | None = None
    bank_amount: Decimal | None = None
    tx_date: date | None = None
    description: str | None = None
    donor_id: uuid.UUID | None = None
    admin_override: bool = False

    @field_validator("cash_type")
    @classmethod
    def validate_cash_type(cls, v):
        return _check_cash_type(v)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/credit", status_code=201)
async def create_credit(
    body: CreditCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.create")),
):
    override = resolve_override(_user, body.admin_override)
    tx = await TransactionService(db).create_credit(
        body.model_dump(exclude={"admin_override"}), _user, override
    )
    return {"success": True, "data": serialize_transaction(tx)}


@router.post("/debit", status_code=201)
async def create_debit(
    body: DebitCreate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.create")),
):
    override = resolve_override(_user, body.admin_override)
    tx = await TransactionService(db).create_debit(
        body.model_dump(exclude={"admin_override"}), _user, override
    )
    return {"success": True, "data": serialize_transaction(tx)}


@router.get("")
async def list_transactions(
    account_id: uuid.UUID | None = Query(None),
    ledger_head_id: uuid.UUID | None = Query(None),
    donor_id: uuid.UUID | None = Query(None),
    tx_type: str | None = Query(None),
    cash_type: str | None = Query(None),
    status: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.view")),
):
    result = await TransactionService(db).list_transactions(
        status=status,
        page=page,
        page_size=page_size,
        account_id=account_id,
        ledger_head_id=ledger_head_id,
        donor_id=donor_id,
        tx_type=tx_type,
        cash_type=cash_type,
        date_from=date_from,
        date_to=date_to,
    )
    return {"success": True, "data": result.pop("items"), **result}


@router.get("/balances")
async def balances_for_date(
    account_id: uuid.UUID = Query(...),
    on: date = Query(..., alias="date"),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.view")),
):
    data = await TransactionService(db).balances_for_date(account_id, on)
    return {"success": True, "data": data}


@router.get("/{tx_id}")
async def get_transaction(
    tx_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.view")),
):
    tx = await TransactionService(db).get(tx_id)
    return {"success": True, "data": serialize_transaction(tx)}


@router.put("/{tx_id}")
async def update_transaction(
    tx_id: uuid.UUID,
    body: TransactionUpdate,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.update")),
):
    override = resolve_override(_user, body.admin_override)
    tx = await TransactionService(db).update(
        tx_id, body.model_dump(exclude_unset=True, exclude={"admin_override"}), _user, override
    )
    return {"success": True, "data": serialize_transaction(tx)}


@router.delete("/{tx_id}")
async def void_transaction(
    tx_id: uuid.UUID,
    admin_override: bool = Query(False),
    reason: str | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("transactions.void")),
):
    override = resolve_override(_user, admin_override)
    tx = await TransactionService(db).void(tx_id, _user, override, reason)
    return {"success": True, "data": serialize_transaction(tx)}
