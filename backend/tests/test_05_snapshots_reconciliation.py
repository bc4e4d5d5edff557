"""
Tests 111-140: Monthly snapshots and reconciliation

The snapshot chain must always agree with the running balances; manual
recalculation and reconciliation repair it when it does not.
"""
import decimal
import uuid
from datetime import date

from sqlalchemy import select

from iafa.models.ledger import LedgerHead
from iafa.models.snapshot import MonthlyLedgerBalance


async def _busy_month(api, funded):
    """A month of mixed activity on the funded account."""
    account, donations, rent = funded["account"], funded["donations"], funded["rent"]
    aid = account["id"]
    await api.debit(aid, rent["id"], donations["id"], "1200", date(2024, 6, 20), "cash")
    cheque_tx = (await api.debit(
        aid, rent["id"], donations["id"], "800", date(2024, 6, 21), "cheque",
        cheque={"cheque_number": "1001", "bank_name": "Indian Bank"},
    ))["data"]
    await api.call("POST", f"/api/cheques/{cheque_tx['cheque']['id']}/clear", json={})
    tx = (await api.credit(aid, donations["id"], "333.33", date(2024, 7, 2), "upi"))["data"]
    await api.call("PUT", f"/api/transactions/{tx['id']}", json={"amount": "444.44"})
    voided = (await api.credit(aid, donations["id"], "90", date(2024, 7, 3)))["data"]
    await api.void(voided["id"])
    await api.credit(
        aid, rent["id"], "150", date(2024, 8, 9), "multiple",
        cash_amount="100", bank_amount="50",
    )


async def _tamper_head(db, head_id: str, cash: str) -> None:
    head = await db.get(LedgerHead, uuid.UUID(head_id))
    head.cash_balance = decimal.Decimal(cash)
    await db.commit()


class TestSnapshotChain:

    async def test_111_latest_snapshot_matches_running_balance(self, api, funded):
        await _busy_month(api, funded)
        heads = await api.call(
            "GET", "/api/ledger-heads", params={"account_id": funded["account"]["id"]}
        )
        for head in heads["data"]:
            chain = await api.snapshots(head["id"])
            latest = chain[-1]
            assert latest["closing_balance"] == head["current_balance"]
            assert latest["cash_in_hand"] == head["cash_balance"]
            assert latest["cash_in_bank"] == head["bank_balance"]

    async def test_112_each_opening_is_previous_closing(self, api, funded):
        await _busy_month(api, funded)
        chain = await api.snapshots(funded["donations"]["id"])
        assert [(s["year"], s["month"]) for s in chain] == [(2024, 6), (2024, 7)]
        for previous, current in zip(chain, chain[1:]):
            assert current["opening_balance"] == previous["closing_balance"]
        for snap in chain:
            assert round(snap["cash_in_hand"] + snap["cash_in_bank"], 2) == snap["closing_balance"]

    async def test_113_filter_by_account_and_month(self, api, funded):
        await _busy_month(api, funded)
        body = await api.call(
            "GET", "/api/monthly-ledger-balances",
            params={"account_id": funded["account"]["id"], "month": 6, "year": 2024},
        )
        names = sorted(s["ledger_head_name"] for s in body["data"])
        assert names == ["Donations", "Rent"]

    async def test_114_manual_recalculation_repairs_snapshot(self, api, funded, db):
        donations = funded["donations"]
        row = (await db.execute(
            select(MonthlyLedgerBalance).where(
                MonthlyLedgerBalance.ledger_head_id == uuid.UUID(donations["id"])
            )
        )).scalar_one()
        row.receipts = 1
        row.closing_balance = 1
        await db.commit()

        body = await api.call(
            "POST", "/api/monthly-closure/recalculate",
            json={"account_id": funded["account"]["id"], "from_date": "2024-06-01"},
        )
        assert body["data"]["heads"] == 2
        june = await api.snapshot(donations["id"], 6, 2024)
        assert june["receipts"] == 7000
        assert june["closing_balance"] == 7000

    async def test_115_recalculation_for_one_head(self, api, funded):
        body = await api.call(
            "POST", "/api/monthly-closure/recalculate",
            json={
                "account_id": funded["account"]["id"],
                "from_date": "2024-06-15",
                "ledger_head_id": funded["donations"]["id"],
            },
        )
        assert body["data"]["heads"] == 1
        assert body["data"]["snapshots_written"] == 1

    async def test_116_recalculation_head_must_belong_to_account(self, api, funded):
        other = await api.account("Other Fund")
        await api.call(
            "POST", "/api/monthly-closure/recalculate", 422,
            json={
                "account_id": other["id"],
                "from_date": "2024-06-01",
                "ledger_head_id": funded["donations"]["id"],
            },
        )

    async def test_117_recalculation_requires_permission(self, api, funded, accountant_headers):
        await api.as_user(accountant_headers).call(
            "POST", "/api/monthly-closure/recalculate", 403,
            json={"account_id": funded["account"]["id"], "from_date": "2024-06-01"},
        )


class TestReconciliation:

    async def test_118_clean_ledger_has_no_discrepancies(self, api, funded):
        await _busy_month(api, funded)
        body = await api.call("POST", "/api/reconciliation/balances", json={})
        assert body["data"]["heads_checked"] == 2
        assert body["data"]["discrepancies"] == []
        assert body["data"]["fixed"] == 0

    async def test_119_tampered_balance_is_reported_not_fixed(self, api, funded, db):
        donations = funded["donations"]
        await _tamper_head(db, donations["id"], "4999.00")

        body = await api.call("POST", "/api/reconciliation/balances", json={"fix": False})
        [entry] = body["data"]["discrepancies"]
        assert entry["ledger_head_id"] == donations["id"]
        assert entry["balance_mismatch"] is True
        assert entry["running_cash"] == 4999
        assert entry["posted_cash"] == 5000
        assert entry["fixed"] is False
        assert (await api.get_head(donations["id"]))["cash_balance"] == 4999

    async def test_120_fix_restores_posted_balance(self, api, funded, db):
        donations = funded["donations"]
        await _tamper_head(db, donations["id"], "4999.00")

        body = await api.call("POST", "/api/reconciliation/balances", json={"fix": True})
        assert body["data"]["fixed"] == 1
        assert (await api.get_head(donations["id"]))["cash_balance"] == 5000

        again = await api.call("POST", "/api/reconciliation/balances", json={})
        assert again["data"]["discrepancies"] == []

        history = await api.call("GET", "/api/reconciliation/history")
        actions = [e["action"] for e in history["data"]]
        assert "reconciliation.balance.fix" in actions
        assert actions.count("reconciliation.run") == 2

    async def test_121_reconciliation_rewrites_stale_snapshots(self, api, funded, db):
        donations = funded["donations"]
        row = (await db.execute(
            select(MonthlyLedgerBalance).where(
                MonthlyLedgerBalance.ledger_head_id == uuid.UUID(donations["id"])
            )
        )).scalar_one()
        row.cash_in_hand = 0
        await db.commit()

        await api.call("POST", "/api/reconciliation/balances", json={})
        june = await api.snapshot(donations["id"], 6, 2024)
        assert june["cash_in_hand"] == 5000

    async def test_122_missing_snapshot_month_is_added(self, api, funded, db):
        donations = funded["donations"]
        row = (await db.execute(
            select(MonthlyLedgerBalance).where(
                MonthlyLedgerBalance.ledger_head_id == uuid.UUID(donations["id"])
            )
        )).scalar_one()
        await db.delete(row)
        await db.commit()

        body = await api.call("POST", "/api/reconciliation/balances", json={})
        [entry] = body["data"]["discrepancies"]
        assert entry["snapshots_added"] == 1
        assert entry["balance_mismatch"] is False
        assert (await api.snapshot(donations["id"], 6, 2024))["closing_balance"] == 7000

    async def test_123_scoped_to_one_account(self, api, funded):
        other = await api.account("Other Fund")
        await api.head(other["id"], "Misc")
        body = await api.call(
            "POST", "/api/reconciliation/balances", json={"account_id": other["id"]}
        )
        assert body["data"]["heads_checked"] == 1

    async def test_124_accountant_may_check_but_not_fix(self, api, funded, accountant_headers):
        accountant = api.as_user(accountant_headers)
        await accountant.call("POST", "/api/reconciliation/balances", json={})
        body = await accountant.call("POST", "/api/reconciliation/balances", 403, json={"fix": True})
        assert "reconciliation.run" in body["message"]

    async def test_125_viewer_cannot_reconcile(self, api, funded, viewer_headers):
        await api.as_user(viewer_headers).call("POST", "/api/reconciliation/balances", 403, json={})
