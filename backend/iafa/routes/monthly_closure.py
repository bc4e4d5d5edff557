"""Monthly closure routes -- period status, close/open/reopen, history, snapshots."""
from __future__ import annotations

import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.middleware.auth import require_permission
from iafa.rbac import REOPEN_PERIOD
from iafa.services import closure_log, ledger_store, period_service, snapshot_service

router = APIRouter(prefix="/api", tags=["monthly-closure"])


class PeriodRequest(BaseModel):
    account_id: uuid.UUID
    month: int
    year: int

    @field_validator("month")
    @classmethod
    def validate_month(cls, v):
        if not 1 <= v <= 12:
            raise ValueError("Month must be between 1 and 12")
        return v


class ReopenRequest(BaseModel):
    account_id: uuid.UUID
    new_closing_date: date


class RecalculateRequest(BaseModel):
    account_id: uuid.UUID
    from_date: date
    ledger_head_id: uuid.UUID | None = None


# ---------------------------------------------------------------------------
# PERIOD STATE
# ---------------------------------------------------------------------------

@router.get("/monthly-closure/status")
async def closure_status(
    today: date | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.view")),
):
    return {"success": True, "data": await period_service.closure_status(db, today)}


@router.get("/monthly-closure/open-period")
async def open_period(
    account_id: uuid.UUID = Query(...),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.view")),
):
    account = await ledger_store.get_account(db, account_id)
    period = await period_service.get_open_period(db, account_id)
    return {
        "success": True,
        "data": {
            "account_id": str(account.id),
            "last_closed_date": account.last_closed_date.isoformat() if account.last_closed_date else None,
            "open_period": period_service.serialize_period(period),
        },
    }


@router.get("/monthly-closure/history")
async def closure_history(
    account_id: uuid.UUID | None = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.view")),
):
    entries = await closure_log.history(db, account_id, limit)
    return {"success": True, "data": [closure_log.serialize_entry(e) for e in entries]}


# ---------------------------------------------------------------------------
# TRANSITIONS
# ---------------------------------------------------------------------------

@router.post("/monthly-closure/close")
async def close_period(
    body: PeriodRequest,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.periods.close")),
):
    data = await period_service.close_period(db, body.account_id, body.month, body.year, _user)
    return {"success": True, "data": data}


@router.post("/monthly-closure/open")
async def open_period_for(
    body: PeriodRequest,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.periods.open")),
):
    data = await period_service.open_period(db, body.account_id, body.month, body.year, _user)
    return {"success": True, "data": data}


@router.post("/monthly-closure/reopen")
async def reopen_period(
    body: ReopenRequest,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission(REOPEN_PERIOD)),
):
    data = await period_service.reopen_period(db, body.account_id, body.new_closing_date, _user)
    return {"success": True, "data": data}


@router.post("/monthly-closure/recalculate")
async def recalculate(
    body: RecalculateRequest,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.recalculate")),
):
    data = await period_service.recalculate(
        db, body.account_id, body.from_date, _user, body.ledger_head_id
    )
    return {"success": True, "data": data}


# ---------------------------------------------------------------------------
# SNAPSHOTS
# ---------------------------------------------------------------------------

@router.get("/monthly-ledger-balances")
async def monthly_ledger_balances(
    account_id: uuid.UUID | None = Query(None),
    ledger_head_id: uuid.UUID | None = Query(None),
    month: int | None = Query(None, ge=1, le=12),
    year: int | None = Query(None),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("monthly_closure.view")),
):
    rows = await snapshot_service.list_snapshots(
        db, account_id=account_id, ledger_head_id=ledger_head_id, month=month, year=year
    )
    return {"success": True, "data": [snapshot_service.serialize_snapshot(s) for s in rows]}
