"""
Tests 071-110: Period closure

Closing, opening and reopening periods, the lock boundary they maintain, the
override capability, and the closure log they leave behind.
"""
import uuid
from datetime import date

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from iafa.models.period import AccountingPeriod


async def _open_count(db, account_id: str) -> int:
    result = await db.execute(
        select(func.count()).select_from(AccountingPeriod).where(
            AccountingPeriod.account_id == uuid.UUID(account_id),
            AccountingPeriod.status == "open",
        )
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def june_book(api):
    """Account with one credit head holding a June 2024 cash credit of 1000."""
    account = await api.account()
    head = await api.head(account["id"], "Donations")
    await api.credit(account["id"], head["id"], "1000", date(2024, 6, 15), "cash")
    return account, head


class TestClosingAndLocking:

    async def test_071_close_sets_last_closed_date(self, api, june_book):
        account, _ = june_book
        body = await api.close(account["id"], 6, 2024)
        assert body["data"]["last_closed_date"] == "2024-06-30"
        detail = await api.call("GET", f"/api/accounts/{account['id']}")
        assert detail["data"]["last_closed_date"] == "2024-06-30"

    async def test_072_locked_date_rejected_without_override(self, api, june_book):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.credit(account["id"], head["id"], "50", date(2024, 6, 10), expect=423)
        assert body["kind"] == "period_locked"
        assert body["details"]["last_closed_date"] == "2024-06-30"
        assert (await api.get_head(head["id"]))["cash_balance"] == 1000

    async def test_073_last_closed_day_itself_is_locked(self, api, june_book):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        await api.credit(account["id"], head["id"], "50", date(2024, 6, 30), expect=423)
        await api.credit(account["id"], head["id"], "50", date(2024, 7, 1))

    async def test_074_override_cascades_into_later_months(self, api, june_book):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        july = await api.snapshot(head["id"], 7, 2024)
        assert july["opening_balance"] == 1000

        tx = (await api.credit(
            account["id"], head["id"], "500", date(2024, 6, 10), admin_override=True
        ))["data"]
        assert tx["admin_override"] is True

        june = await api.snapshot(head["id"], 6, 2024)
        july = await api.snapshot(head["id"], 7, 2024)
        assert june["closing_balance"] == 1500
        assert july["opening_balance"] == 1500
        assert july["closing_balance"] == 1500
        assert (await api.get_head(head["id"]))["cash_balance"] == 1500

    async def test_075_override_cascades_through_several_months(self, api, june_book):
        account, head = june_book
        await api.credit(account["id"], head["id"], "200", date(2024, 8, 3))
        await api.credit(account["id"], head["id"], "300", date(2024, 9, 3))
        await api.close(account["id"], 6, 2024)
        await api.open(account["id"], 7, 2024)
        await api.open(account["id"], 8, 2024)

        await api.credit(account["id"], head["id"], "100", date(2024, 6, 1), admin_override=True)

        chain = {(s["year"], s["month"]): s for s in await api.snapshots(head["id"])}
        assert chain[(2024, 6)]["closing_balance"] == 1100
        assert chain[(2024, 7)]["opening_balance"] == 1100
        assert chain[(2024, 8)]["opening_balance"] == 1100
        assert chain[(2024, 8)]["closing_balance"] == 1300
        assert chain[(2024, 9)]["opening_balance"] == 1300
        assert chain[(2024, 9)]["closing_balance"] == 1600
        for snap in chain.values():
            assert snap["closing_balance"] == snap["opening_balance"] + snap["receipts"] - snap["payments"]

    async def test_076_accountant_cannot_request_override(self, api, june_book, accountant_headers):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        accountant = api.as_user(accountant_headers)
        body = await accountant.credit(
            account["id"], head["id"], "50", date(2024, 6, 10), expect=403, admin_override=True
        )
        assert body["kind"] == "forbidden"
        assert "transactions.override_period_lock" in body["message"]

    async def test_077_void_in_closed_period_needs_override(self, api, june_book):
        account, head = june_book
        listing = await api.call("GET", "/api/transactions", params={"account_id": account["id"]})
        tx_id = listing["data"][0]["id"]
        await api.close(account["id"], 6, 2024)

        await api.void(tx_id, expect=423)
        await api.void(tx_id, admin_override=True)
        assert (await api.get_head(head["id"]))["cash_balance"] == 0
        assert (await api.snapshot(head["id"], 7, 2024))["opening_balance"] == 0

    async def test_078_update_into_closed_period_rejected(self, api, june_book):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        tx = (await api.credit(account["id"], head["id"], "80", date(2024, 7, 2)))["data"]
        await api.call(
            "PUT", f"/api/transactions/{tx['id']}", 423, json={"tx_date": "2024-06-29"}
        )

    async def test_079_clearing_cheque_from_closed_period_needs_override(self, api):
        account = await api.account()
        head = await api.head(account["id"], "Donations")
        tx = (await api.credit(
            account["id"], head["id"], "300", date(2024, 6, 28), "cheque",
            cheque={"cheque_number": "77", "bank_name": "Canara"},
        ))["data"]
        await api.close(account["id"], 6, 2024)

        path = f"/api/cheques/{tx['cheque']['id']}/clear"
        await api.call("POST", path, 423, json={"clearing_date": "2024-07-02"})
        await api.call("POST", path, json={"clearing_date": "2024-07-02", "admin_override": True})
        assert (await api.snapshot(head["id"], 6, 2024))["cash_in_bank"] == 300
        assert (await api.snapshot(head["id"], 7, 2024))["opening_balance"] == 300

    async def test_080_closing_an_already_closed_month_rejected(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.close(account["id"], 6, 2024, expect=422)
        assert body["kind"] == "validation_error"
        await api.close(account["id"], 5, 2024, expect=422)

    async def test_081_close_must_target_the_open_period(self, api, june_book):
        account, _ = june_book
        await api.open(account["id"], 7, 2024)
        body = await api.close(account["id"], 8, 2024, expect=409)
        assert body["kind"] == "not_current_period"
        await api.close(account["id"], 7, 2024)

    async def test_082_close_prepares_next_month(self, api, june_book):
        account, head = june_book
        rent = await api.head(account["id"], "Rent", "debit")
        await api.close(account["id"], 6, 2024)
        assert (await api.snapshot(head["id"], 7, 2024))["opening_balance"] == 1000
        assert (await api.snapshot(rent["id"], 6, 2024))["closing_balance"] == 0
        assert (await api.snapshot(rent["id"], 7, 2024)) is not None

    async def test_083_invalid_month_rejected(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 13, 2024, expect=422)

    async def test_099_skipping_a_month_needs_an_open_period(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.close(account["id"], 8, 2024, expect=409)
        assert body["kind"] == "no_open_period"
        detail = await api.call("GET", f"/api/accounts/{account['id']}")
        assert detail["data"]["last_closed_date"] == "2024-06-30"

        await api.open(account["id"], 8, 2024)
        body = await api.close(account["id"], 8, 2024)
        assert body["data"]["last_closed_date"] == "2024-08-31"

    async def test_100_month_after_last_close_needs_no_open_period(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.close(account["id"], 7, 2024)
        assert body["data"]["last_closed_date"] == "2024-07-31"


class TestOpenPeriod:

    async def test_084_open_and_query_open_period(self, api, june_book):
        account, _ = june_book
        body = await api.open(account["id"], 7, 2024)
        assert body["data"]["changed"] is True
        assert body["data"]["period"]["status"] == "open"

        current = await api.call(
            "GET", "/api/monthly-closure/open-period", params={"account_id": account["id"]}
        )
        assert current["data"]["open_period"]["month"] == 7
        assert current["data"]["open_period"]["year"] == 2024

    async def test_085_opening_open_period_is_a_no_op(self, api, june_book):
        account, _ = june_book
        await api.open(account["id"], 7, 2024)
        body = await api.open(account["id"], 7, 2024)
        assert body["data"]["changed"] is False
        history = await api.call(
            "GET", "/api/monthly-closure/history", params={"account_id": account["id"]}
        )
        assert [e["action"] for e in history["data"]] == ["OPEN_PERIOD"]

    async def test_086_opening_later_month_force_closes_current(self, api, june_book, db):
        account, head = june_book
        await api.open(account["id"], 7, 2024)
        body = await api.open(account["id"], 8, 2024)
        assert body["data"]["force_closed"] == {
            "month": 7, "year": 2024, "last_closed_date": "2024-07-31",
        }
        assert await _open_count(db, account["id"]) == 1

        detail = await api.call("GET", f"/api/accounts/{account['id']}")
        assert detail["data"]["last_closed_date"] == "2024-07-31"
        assert detail["data"]["open_period"]["month"] == 8

        history = await api.call(
            "GET", "/api/monthly-closure/history", params={"account_id": account["id"]}
        )
        actions = [(e["action"], e["month"]) for e in history["data"]]
        assert actions == [
            ("OPEN_PERIOD", 8),
            ("FORCE_CLOSE_PERIOD", 7),
            ("OPEN_PERIOD", 7),
        ]

    async def test_087_opening_earlier_month_than_open_rejected(self, api, june_book):
        account, _ = june_book
        await api.open(account["id"], 8, 2024)
        await api.open(account["id"], 7, 2024, expect=422)

    async def test_088_opening_closed_month_rejected(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        await api.open(account["id"], 6, 2024, expect=422)

    async def test_089_at_most_one_open_period_through_a_sequence(self, api, june_book, db):
        account, _ = june_book
        aid = account["id"]
        await api.open(aid, 6, 2024)
        assert await _open_count(db, aid) == 1
        await api.close(aid, 6, 2024)
        assert await _open_count(db, aid) == 0
        await api.open(aid, 7, 2024)
        await api.open(aid, 9, 2024)
        assert await _open_count(db, aid) == 1
        await api.reopen(aid, date(2024, 6, 30))
        assert await _open_count(db, aid) == 1
        await api.close(aid, 9, 2024)
        assert await _open_count(db, aid) == 0

    async def test_090_database_rejects_second_open_period(self, api, db):
        account = await api.account()
        aid = uuid.UUID(account["id"])
        db.add(AccountingPeriod(account_id=aid, month=6, year=2024, status="open"))
        await db.flush()
        db.add(AccountingPeriod(account_id=aid, month=7, year=2024, status="open"))
        with pytest.raises(IntegrityError):
            await db.flush()
        await db.rollback()

    async def test_101_database_rejects_unknown_period_status(self, api, db):
        account = await api.account()
        db.add(AccountingPeriod(account_id=uuid.UUID(account["id"]), month=6, year=2024, status="frozen"))
        with pytest.raises(IntegrityError):
            await db.flush()
        await db.rollback()

    async def test_091_accountant_can_close_and_open(self, api, june_book, accountant_headers):
        account, _ = june_book
        accountant = api.as_user(accountant_headers)
        await accountant.open(account["id"], 6, 2024)
        await accountant.close(account["id"], 6, 2024)

    async def test_092_viewer_cannot_close(self, api, june_book, viewer_headers):
        account, _ = june_book
        body = await api.as_user(viewer_headers).close(account["id"], 6, 2024, expect=403)
        assert body["kind"] == "forbidden"


class TestReopen:

    async def test_093_close_reopen_close_round_trip(self, api, june_book):
        account, _ = june_book
        aid = account["id"]
        first = await api.close(aid, 6, 2024)
        before = first["data"]["last_closed_date"]

        reopened = (await api.reopen(aid, date(2024, 5, 31)))["data"]
        assert reopened["previous_last_closed_date"] == "2024-06-30"
        assert reopened["last_closed_date"] == "2024-05-31"
        assert "2024-06-01" in reopened["warning"]

        again = await api.close(aid, 6, 2024)
        assert again["data"]["last_closed_date"] == before

    async def test_094_reopen_readmits_writes(self, api, june_book):
        account, head = june_book
        await api.close(account["id"], 6, 2024)
        await api.credit(account["id"], head["id"], "10", date(2024, 6, 20), expect=423)
        await api.reopen(account["id"], date(2024, 5, 31))
        await api.credit(account["id"], head["id"], "10", date(2024, 6, 20))
        assert (await api.snapshot(head["id"], 7, 2024))["opening_balance"] == 1010

    async def test_095_reopen_requires_earlier_date(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.reopen(account["id"], date(2024, 6, 30), expect=422)
        assert body["kind"] == "validation_error"
        await api.reopen(account["id"], date(2024, 7, 15), expect=422)

    async def test_096_reopen_never_closed_account_rejected(self, api, june_book):
        account, _ = june_book
        await api.reopen(account["id"], date(2024, 5, 31), expect=422)

    async def test_097_reopen_requires_capability(self, api, june_book, accountant_headers):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        body = await api.as_user(accountant_headers).reopen(
            account["id"], date(2024, 5, 31), expect=403
        )
        assert "monthly_closure.reopen" in body["message"]
        detail = await api.call("GET", f"/api/accounts/{account['id']}")
        assert detail["data"]["last_closed_date"] == "2024-06-30"

    async def test_098_reopen_is_logged_with_warning(self, api, june_book):
        account, _ = june_book
        await api.close(account["id"], 6, 2024)
        await api.reopen(account["id"], date(2024, 4, 30))
        history = await api.call(
            "GET", "/api/monthly-closure/history", params={"account_id": account["id"]}
        )
        latest = history["data"][0]
        assert latest["action"] == "REOPEN_PERIOD"
        assert (latest["month"], latest["year"]) == (4, 2024)
        assert latest["details"]["previous_last_closed_date"] == "2024-06-30"
        assert "warning" in latest["details"]
        assert history["data"][1]["action"] == "CLOSE_PERIOD"
