"""Cheque routes -- pending cheques, clearing and cancellation."""
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.middleware.auth import require_permission, resolve_override
from iafa.services import ledger_store
from iafa.services.cheque_service import ChequeService
from iafa.services.transaction_service import serialize_cheque

router = APIRouter(prefix="/api/cheques", tags=["cheques"])


class ChequeClear(BaseModel):
    clearing_date: date | None = None
    admin_override: bool = False


class ChequeCancel(BaseModel):
    reason: str | None = None
    admin_override: bool = False


@router.get("")
async def list_cheques(
    account_id: uuid.UUID | None = Query(None),
    ledger_head_id: uuid.UUID | None = Query(None),
    status: str | None = Query(None),
    due_before: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("cheques.view")),
):
    result = await ChequeService(db).list_cheques(
        account_id=account_id,
        ledger_head_id=ledger_head_id,
        status=status,
        due_before=due_before,
    )
    return {"success": True, "data": result["items"], "totals": result["totals"]}


@router.get("/available-balance")
async def available_balance(
    ledger_head_id: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("cheques.view")),
):
    head = await ledger_store.get_ledger_head(db, ledger_head_id)
    pending = await ledger_store.pending_outgoing_cheques(db, ledger_head_id)
    return {
        "success": True,
        "data": {
            "ledger_head_id": str(head.id),
            "bank_balance": float(head.bank_balance),
            "pending_outgoing_cheques": float(pending),
            "available_bank_balance": float(
                await ledger_store.available_bank_balance(db, ledger_head_id)
            ),
        },
    }


@router.get("/{cheque_id}")
async def get_cheque(
    cheque_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("cheques.view")),
):
    cheque = await ChequeService(db).get(cheque_id)
    return {"success": True, "data": serialize_cheque(cheque)}


@router.post("/{cheque_id}/clear")
async def clear_cheque(
    cheque_id: uuid.UUID,
    body: ChequeClear,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("cheques.clear")),
):
    override = resolve_override(_user, body.admin_override)
    cheque = await ChequeService(db).clear(cheque_id, _user, body.clearing_date, override)
    return {"success": True, "data": serialize_cheque(cheque)}


@router.post("/{cheque_id}/cancel")
async def cancel_cheque(
    cheque_id: uuid.UUID,
    body: ChequeCancel,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("cheques.cancel")),
):
    override = resolve_override(_user, body.admin_override)
    cheque = await ChequeService(db).cancel(cheque_id, _user, body.reason, override)
    return {"success": True, "data": serialize_cheque(cheque)}
