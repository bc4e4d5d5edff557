"""
RBAC Permission Registry: IAFA ledger

Defines the canonical role-to-permission mapping.  Capabilities that change
history (overriding a period lock, reopening a closed period) are ordinary
permissions here, so they are checked on the server against the acting
principal instead of being trusted from the request body.

Permission string format: {module}.{resource}.{action}, or {module}.{action}
for module-wide capabilities.
"""
from __future__ import annotations

# ---------------------------------------------------------------------------
# All permission strings used across the system
# ---------------------------------------------------------------------------

OVERRIDE_PERIOD_LOCK = "transactions.override_period_lock"
REOPEN_PERIOD = "monthly_closure.reopen"

ALL_PERMISSIONS: list[str] = sorted([
    # Ledger configuration
    "ledger.accounts.view",
    "ledger.accounts.create",
    "ledger.accounts.update",
    "ledger.accounts.delete",
    "ledger.heads.view",
    "ledger.heads.create",
    "ledger.heads.update",
    "ledger.heads.delete",
    "ledger.donors.view",
    "ledger.donors.create",
    "ledger.donors.update",
    "ledger.donors.delete",
    "ledger.booklets.view",
    "ledger.booklets.create",
    "ledger.booklets.update",
    # Transactions
    "transactions.view",
    "transactions.create",
    "transactions.update",
    "transactions.void",
    OVERRIDE_PERIOD_LOCK,
    # Cheques
    "cheques.view",
    "cheques.clear",
    "cheques.cancel",
    # Monthly closure
    "monthly_closure.view",
    "monthly_closure.periods.close",
    "monthly_closure.periods.open",
    REOPEN_PERIOD,
    "monthly_closure.recalculate",
    # Reconciliation
    "reconciliation.view",
    "reconciliation.run",
])


# ---------------------------------------------------------------------------
# Role → Permissions mapping (source of truth)
# ---------------------------------------------------------------------------

_READ_ONLY = {
    "ledger.accounts.view", "ledger.heads.view",
    "ledger.donors.view", "ledger.booklets.view",
    "transactions.view", "cheques.view", "monthly_closure.view",
}

ROLE_PERMISSIONS: dict[str, set[str]] = {
    # ── Admin ────────────────────────────────────────────────────────────
    # Full access, including backdated writes into closed periods and
    # reopening closed periods.
    "admin": set(ALL_PERMISSIONS),

    # ── Accountant ───────────────────────────────────────────────────────
    # Day-to-day entry, cheque handling and month-end close.  Cannot write
    # into a closed period or reopen one.
    "accountant": _READ_ONLY | {
        "ledger.donors.create", "ledger.donors.update",
        "ledger.booklets.create", "ledger.booklets.update",
        "transactions.create", "transactions.update", "transactions.void",
        "cheques.clear", "cheques.cancel",
        "monthly_closure.periods.close", "monthly_closure.periods.open",
        "reconciliation.view",
    },

    # ── Viewer ───────────────────────────────────────────────────────────
    "viewer": set(_READ_ONLY),
}


def get_role_permissions(role: str) -> set[str]:
    """Return the base permission set for a role, or empty set if unknown."""
    return ROLE_PERMISSIONS.get(role, set())


def has_permission(user: dict, permission: str) -> bool:
    return permission in get_role_permissions(user.get("role", ""))
