"""Scheduled jobs run by the APScheduler instance started in ``main.lifespan``.

* month-end rollover: close the month that just ended and open the new one;
* nightly reconciliation: rebuild snapshot chains and compare balances.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any

from sqlalchemy import select

from iafa.config import settings
from iafa.database import AsyncSessionLocal
from iafa.exceptions import LedgerError
from iafa.models.ledger import Account
from iafa.services import period_service, reconciliation
from iafa.services.snapshot_service import month_end, previous_month

logger = logging.getLogger(__name__)


async def month_end_rollover(today: datetime.date | None = None) -> dict[str, Any]:
    """Close the previous month and open the current one for every account.

    Accounts that already closed the previous month only get the current
    month opened.  A failure on one account is logged and does not stop the
    others.
    """
    today = today or datetime.date.today()
    py, pm = previous_month(today.year, today.month)
    summary: dict[str, Any] = {"closed": 0, "opened": 0, "failed": []}

    async with AsyncSessionLocal() as db:
        account_ids = (await db.execute(select(Account.id).order_by(Account.name))).scalars().all()

    for account_id in account_ids:
        async with AsyncSessionLocal() as db:
            try:
                account = await db.get(Account, account_id)
                lcd = account.last_closed_date
                if lcd is None or lcd < month_end(py, pm):
                    open_period = await period_service.get_open_period(db, account_id)
                    if open_period is None or (open_period.year, open_period.month) == (py, pm):
                        await period_service.close_period(db, account_id, pm, py, None)
                        summary["closed"] += 1
                result = await period_service.open_period(
                    db, account_id, today.month, today.year, None
                )
                if result["changed"]:
                    summary["opened"] += 1
            except LedgerError as exc:
                logger.error("Month-end rollover failed for account %s: %s", account_id, exc.message)
                summary["failed"].append({"account_id": str(account_id), "error": exc.message})

    logger.info("Month-end rollover for %04d-%02d: %s", today.year, today.month, summary)
    return summary


async def nightly_reconciliation() -> dict[str, Any]:
    async with AsyncSessionLocal() as db:
        try:
            report = await reconciliation.reconcile_balances(db, fix=settings.RECONCILE_AUTO_FIX)
        except LedgerError as exc:
            logger.error("Nightly reconciliation failed: %s", exc.message)
            return {"status": "failed", "error": exc.message}
    logger.info(
        "Nightly reconciliation: %d head(s), %d discrepancy(ies), %d fixed",
        report["heads_checked"], len(report["discrepancies"]), report["fixed"],
    )
    return {"status": "completed", **report}
