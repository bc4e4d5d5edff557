"""
Tests 001-020: Ledger configuration

Accounts, ledger heads, donors and receipt booklets, plus the error envelope
returned for unknown references and bad input.
"""
import uuid


class TestAccountsAndHeads:

    async def test_001_create_account(self, api):
        account = await api.account("Temple Fund")
        assert account["name"] == "Temple Fund"
        assert account["last_closed_date"] is None

    async def test_002_duplicate_account_name_rejected(self, api):
        await api.account("Temple Fund")
        body = await api.call("POST", "/api/accounts", 422, json={"name": "Temple Fund"})
        assert body["success"] is False
        assert body["kind"] == "validation_error"

    async def test_003_blank_account_name_rejected(self, api):
        body = await api.call("POST", "/api/accounts", 422, json={"name": "   "})
        assert body["kind"] == "validation_error"

    async def test_004_list_accounts_counts_heads(self, api):
        account = await api.account()
        await api.head(account["id"], "Donations")
        await api.head(account["id"], "Rent", "debit")
        body = await api.call("GET", "/api/accounts")
        assert body["total"] == 1
        assert body["data"][0]["ledger_head_count"] == 2

    async def test_005_head_starts_at_zero(self, api):
        account = await api.account()
        head = await api.head(account["id"], "Donations")
        assert head["cash_balance"] == 0
        assert head["bank_balance"] == 0
        assert head["current_balance"] == 0
        assert head["is_active"] is True

    async def test_006_head_type_must_be_credit_or_debit(self, api):
        account = await api.account()
        body = await api.call(
            "POST", "/api/ledger-heads", 422,
            json={"account_id": account["id"], "name": "Misc", "head_type": "asset"},
        )
        assert body["kind"] == "validation_error"

    async def test_007_duplicate_head_name_in_account_rejected(self, api):
        account = await api.account()
        await api.head(account["id"], "Donations")
        await api.call(
            "POST", "/api/ledger-heads", 422,
            json={"account_id": account["id"], "name": "Donations", "head_type": "credit"},
        )

    async def test_008_same_head_name_in_other_account_allowed(self, api):
        a = await api.account("Fund A")
        b = await api.account("Fund B")
        await api.head(a["id"], "Donations")
        await api.head(b["id"], "Donations")

    async def test_009_account_detail_lists_heads_and_open_period(self, api):
        account = await api.account()
        await api.head(account["id"], "Rent", "debit")
        await api.head(account["id"], "Donations")
        body = await api.call("GET", f"/api/accounts/{account['id']}")
        names = [h["name"] for h in body["data"]["ledger_heads"]]
        assert names == ["Donations", "Rent"]
        assert body["data"]["open_period"] is None

    async def test_010_unknown_account_is_not_found(self, api):
        body = await api.call("GET", f"/api/accounts/{uuid.uuid4()}", 404)
        assert body["success"] is False
        assert body["kind"] == "not_found"
        assert body["details"]["resource"] == "Account"

    async def test_011_head_for_unknown_account_is_not_found(self, api):
        await api.call(
            "POST", "/api/ledger-heads", 404,
            json={"account_id": str(uuid.uuid4()), "name": "X", "head_type": "credit"},
        )

    async def test_012_filter_heads_by_type(self, api):
        account = await api.account()
        await api.head(account["id"], "Donations")
        await api.head(account["id"], "Rent", "debit")
        body = await api.call(
            "GET", "/api/ledger-heads", params={"account_id": account["id"], "head_type": "debit"}
        )
        assert [h["name"] for h in body["data"]] == ["Rent"]


class TestDonorsAndBooklets:

    async def test_013_create_and_fetch_donor(self, api):
        body = await api.call("POST", "/api/donors", 201, json={"name": " Asha Rao ", "phone": "98450"})
        donor = body["data"]
        assert donor["name"] == "Asha Rao"
        fetched = await api.call("GET", f"/api/donors/{donor['id']}")
        assert fetched["data"]["phone"] == "98450"

    async def test_014_search_donors(self, api):
        await api.call("POST", "/api/donors", 201, json={"name": "Asha Rao"})
        await api.call("POST", "/api/donors", 201, json={"name": "Vikram Iyer"})
        body = await api.call("GET", "/api/donors", params={"search": "vik"})
        assert body["total"] == 1
        assert body["data"][0]["name"] == "Vikram Iyer"

    async def test_015_create_booklet_lists_all_pages(self, api):
        body = await api.call(
            "POST", "/api/booklets", 201,
            json={"booklet_no": "B-001", "start_no": 101, "end_no": 105},
        )
        booklet = body["data"]
        assert booklet["pages_left"] == [101, 102, 103, 104, 105]
        assert booklet["pages_used"] == 0

    async def test_016_booklet_range_validated(self, api):
        await api.call(
            "POST", "/api/booklets", 422,
            json={"booklet_no": "B-002", "start_no": 50, "end_no": 10},
        )

    async def test_017_duplicate_booklet_number_rejected(self, api):
        payload = {"booklet_no": "B-003", "start_no": 1, "end_no": 10}
        await api.call("POST", "/api/booklets", 201, json=payload)
        await api.call("POST", "/api/booklets", 422, json=payload)

    async def test_018_unknown_donor_is_not_found(self, api):
        await api.call("GET", f"/api/donors/{uuid.uuid4()}", 404)
