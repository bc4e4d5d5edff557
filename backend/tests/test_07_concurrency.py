"""
Tests 161-170: Concurrent writers on one account

Writes to an account are serialised, so racing requests never lose an
update and the snapshot chain always matches the running balances.
"""
import asyncio
from datetime import date


class TestConcurrentWrites:

    async def test_161_parallel_credits_are_all_applied(self, api):
        account = await api.account()
        head = await api.head(account["id"], "Donations")

        bodies = await asyncio.gather(*[
            api.credit(account["id"], head["id"], "100", date(2024, 6, day))
            for day in range(1, 11)
        ])
        assert all(b["success"] for b in bodies)

        refreshed = await api.get_head(head["id"])
        assert refreshed["cash_balance"] == 1000
        june = await api.snapshot(head["id"], 6, 2024)
        assert june["receipts"] == 1000
        assert june["closing_balance"] == 1000

    async def test_162_parallel_debits_never_overdraw(self, api, funded):
        account, donations, rent = funded["account"], funded["donations"], funded["rent"]

        async def spend():
            response = await api.client.post(
                "/api/transactions/debit",
                json={
                    "account_id": account["id"],
                    "ledger_head_id": rent["id"],
                    "amount": "1000",
                    "tx_date": "2024-06-20",
                    "cash_type": "cash",
                    "source_ledger_head_id": donations["id"],
                },
                headers=api.headers,
            )
            return response.status_code

        statuses = await asyncio.gather(*[spend() for _ in range(8)])
        # 5000 cash covers exactly five debits of 1000.
        assert statuses.count(201) == 5
        assert statuses.count(422) == 3
        assert (await api.get_head(donations["id"]))["cash_balance"] == 0
        assert (await api.get_head(rent["id"]))["cash_balance"] == 5000

    async def test_163_close_racing_backdated_credit(self, api):
        account = await api.account()
        head = await api.head(account["id"], "Donations")
        await api.credit(account["id"], head["id"], "100", date(2024, 6, 1))

        async def late_credit():
            response = await api.client.post(
                "/api/transactions/credit",
                json={
                    "account_id": account["id"],
                    "ledger_head_id": head["id"],
                    "amount": "50",
                    "tx_date": "2024-06-29",
                    "cash_type": "cash",
                },
                headers=api.headers,
            )
            return response.status_code

        close_body, credit_status = await asyncio.gather(
            api.close(account["id"], 6, 2024), late_credit()
        )
        assert close_body["data"]["last_closed_date"] == "2024-06-30"
        assert credit_status in (201, 423)

        expected = 150 if credit_status == 201 else 100
        june = await api.snapshot(head["id"], 6, 2024)
        assert june["closing_balance"] == expected
        assert (await api.get_head(head["id"]))["cash_balance"] == expected
