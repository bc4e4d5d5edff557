"""Reconciliation routes."""
from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from iafa.database import get_db
from iafa.middleware.auth import require_permission
from iafa.rbac import has_permission
from iafa.services import reconciliation

router = APIRouter(prefix="/api/reconciliation", tags=["reconciliation"])


class ReconcileRequest(BaseModel):
    fix: bool = False
    account_id: uuid.UUID | None = None


@router.post("/balances")
async def reconcile_balances(
    body: ReconcileRequest,
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reconciliation.view")),
):
    # A dry run only reports; correcting balances needs the run permission.
    if body.fix and not has_permission(_user, "reconciliation.run"):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Missing permissions: reconciliation.run",
        )
    report = await reconciliation.reconcile_balances(
        db, fix=body.fix, account_id=body.account_id, user=_user
    )
    return {"success": True, "data": report}


@router.get("/history")
async def reconciliation_history(
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
    _user: dict = Depends(require_permission("reconciliation.view")),
):
    return {"success": True, "data": await reconciliation.history(db, limit)}
