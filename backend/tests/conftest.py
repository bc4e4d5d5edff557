"""
Test fixtures for the IAFA ledger.

Tests drive the FastAPI app in-process through httpx's ASGI transport against
a throwaway SQLite database.  Every test gets a freshly created schema with
three seeded users (admin, accountant, viewer) and is torn down afterwards.
"""
import os
import tempfile

# Settings are read at import time, so the environment must be ready first.
_DB_DIR = tempfile.mkdtemp(prefix="iafa-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/ledger.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["AUTO_CREATE_SCHEMA"] = "false"

from datetime import date  # noqa: E402

import httpx  # noqa: E402
import pytest_asyncio  # noqa: E402

import iafa.models  # noqa: E402,F401
from iafa.database import AsyncSessionLocal, Base, async_engine  # noqa: E402
from iafa.main import app  # noqa: E402
from iafa.middleware.auth import create_access_token, hash_password  # noqa: E402
from iafa.models.user import User  # noqa: E402
from iafa.services import locks  # noqa: E402

# ---------------------------------------------------------------------------
# Seed users
# ---------------------------------------------------------------------------

USERS = {
    "admin": ("Ledger Admin", "admin"),
    "accountant": ("Ledger Accountant", "accountant"),
    "viewer": ("Ledger Viewer", "viewer"),
}
PASSWORD = "secret123"

_password_hash: str | None = None


def _hashed_password() -> str:
    # bcrypt is slow; hash once for the whole session.
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(PASSWORD)
    return _password_hash


@pytest_asyncio.fixture(autouse=True)
async def schema():
    """Fresh tables and seeded users for every test."""
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    users = {}
    async with AsyncSessionLocal() as db:
        for username, (display_name, role) in USERS.items():
            user = User(
                username=username,
                password_hash=_hashed_password(),
                display_name=display_name,
                email=f"{username}@example.org",
                role=role,
                is_active=True,
            )
            db.add(user)
            users[username] = user
        await db.commit()

    yield users

    # Per-account locks belong to this test's event loop.
    locks._account_locks.clear()
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await async_engine.dispose()


@pytest_asyncio.fixture
async def client():
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=30.0) as c:
        yield c


@pytest_asyncio.fixture
async def db():
    """A raw session for looking at (or tampering with) stored rows."""
    async with AsyncSessionLocal() as session:
        yield session


def _headers(user: User) -> dict:
    token = create_access_token({"sub": user.username, "role": user.role, "user_id": user.id})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def admin_headers(schema):
    return _headers(schema["admin"])


@pytest_asyncio.fixture
async def accountant_headers(schema):
    return _headers(schema["accountant"])


@pytest_asyncio.fixture
async def viewer_headers(schema):
    return _headers(schema["viewer"])


# ---------------------------------------------------------------------------
# API helper
# ---------------------------------------------------------------------------


def _iso(value):
    return value.isoformat() if isinstance(value, date) else value


class LedgerAPI:
    """Thin wrapper over the HTTP API used by the scenario tests."""

    def __init__(self, client: httpx.AsyncClient, headers: dict):
        self.client = client
        self.headers = headers

    def as_user(self, headers: dict) -> "LedgerAPI":
        return LedgerAPI(self.client, headers)

    async def call(self, method: str, path: str, expect: int = 200, **kwargs) -> dict:
        r = await self.client.request(method, path, headers=self.headers, **kwargs)
        assert r.status_code == expect, f"{method} {path} -> {r.status_code}: {r.text}"
        return r.json()

    # ------ ledger setup ------

    async def account(self, name: str = "General Fund") -> dict:
        body = await self.call("POST", "/api/accounts", 201, json={"name": name})
        return body["data"]

    async def head(self, account_id: str, name: str, head_type: str = "credit") -> dict:
        body = await self.call(
            "POST", "/api/ledger-heads", 201,
            json={"account_id": account_id, "name": name, "head_type": head_type},
        )
        return body["data"]

    async def get_head(self, head_id: str) -> dict:
        return (await self.call("GET", f"/api/ledger-heads/{head_id}"))["data"]

    # ------ transactions ------

    async def credit(self, account_id, head_id, amount, tx_date, cash_type="cash",
                     expect=201, **extra) -> dict:
        payload = {
            "account_id": account_id,
            "ledger_head_id": head_id,
            "cash_type": cash_type,
            "amount": amount,
            "tx_date": _iso(tx_date),
            **{k: _iso(v) for k, v in extra.items()},
        }
        return await self.call("POST", "/api/transactions/credit", expect, json=payload)

    async def debit(self, account_id, destination_id, source_id, amount, tx_date,
                    cash_type="cash", expect=201, **extra) -> dict:
        payload = {
            "account_id": account_id,
            "ledger_head_id": destination_id,
            "source_ledger_head_id": source_id,
            "cash_type": cash_type,
            "amount": amount,
            "tx_date": _iso(tx_date),
            **{k: _iso(v) for k, v in extra.items()},
        }
        return await self.call("POST", "/api/transactions/debit", expect, json=payload)

    async def void(self, tx_id: str, expect: int = 200, **params) -> dict:
        return await self.call("DELETE", f"/api/transactions/{tx_id}", expect, params=params)

    # ------ periods ------

    async def close(self, account_id, month, year, expect=200) -> dict:
        return await self.call(
            "POST", "/api/monthly-closure/close", expect,
            json={"account_id": account_id, "month": month, "year": year},
        )

    async def open(self, account_id, month, year, expect=200) -> dict:
        return await self.call(
            "POST", "/api/monthly-closure/open", expect,
            json={"account_id": account_id, "month": month, "year": year},
        )

    async def reopen(self, account_id, new_closing_date, expect=200) -> dict:
        return await self.call(
            "POST", "/api/monthly-closure/reopen", expect,
            json={"account_id": account_id, "new_closing_date": _iso(new_closing_date)},
        )

    async def snapshot(self, head_id, month, year) -> dict | None:
        body = await self.call(
            "GET", "/api/monthly-ledger-balances",
            params={"ledger_head_id": head_id, "month": month, "year": year},
        )
        return body["data"][0] if body["data"] else None

    async def snapshots(self, head_id) -> list[dict]:
        body = await self.call(
            "GET", "/api/monthly-ledger-balances", params={"ledger_head_id": head_id}
        )
        return body["data"]


@pytest_asyncio.fixture
async def api(client, admin_headers):
    return LedgerAPI(client, admin_headers)


@pytest_asyncio.fixture
async def funded(api):
    """Account with a funded credit head and an empty debit head."""
    account = await api.account()
    donations = await api.head(account["id"], "Donations", "credit")
    rent = await api.head(account["id"], "Rent", "debit")
    await api.credit(account["id"], donations["id"], "5000.00", date(2024, 6, 1), "cash")
    await api.credit(account["id"], donations["id"], "2000.00", date(2024, 6, 1), "bank")
    return {"account": account, "donations": donations, "rent": rent}
