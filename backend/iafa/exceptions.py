"""Typed errors raised by the ledger services.

Every error carries a stable machine-readable ``code`` and the HTTP status
the API layer answers with.  Services never raise ``HTTPException``; the
handlers registered in ``main.py`` turn these into the JSON envelope::

    {"success": false, "kind": "<code>", "message": "<text>"}

Nothing in the service layer retries on any of these.  A financial write that
fails is rolled back as a whole and reported to the caller.
"""
from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base class for all domain errors."""

    code = "ledger_error"
    status_code = 400

    def __init__(self, message: str, **data: Any) -> None:
        super().__init__(message)
        self.message = message
        self.data = data

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "kind": self.code,
            "message": self.message,
        }
        if self.data:
            body["details"] = {k: str(v) for k, v in self.data.items()}
        return body


class ValidationError(LedgerError):
    """Malformed or missing input."""

    code = "validation_error"
    status_code = 422


class InvalidStateError(ValidationError):
    """The target exists but its state does not allow the operation."""

    code = "invalid_state"
    status_code = 409


class NotFoundError(LedgerError):
    code = "not_found"
    status_code = 404

    def __init__(self, resource: str, resource_id: Any) -> None:
        super().__init__(f"{resource} {resource_id} not found", resource=resource, id=resource_id)
        self.resource = resource
        self.resource_id = resource_id


class PeriodLockedError(LedgerError):
    """Date falls on or before the account's last closed date."""

    code = "period_locked"
    status_code = 423

    def __init__(self, tx_date: Any, last_closed_date: Any) -> None:
        super().__init__(
            f"Date {tx_date} falls inside a closed period "
            f"(closed through {last_closed_date})",
            tx_date=tx_date,
            last_closed_date=last_closed_date,
        )
        self.tx_date = tx_date
        self.last_closed_date = last_closed_date


class InsufficientFundsError(LedgerError):
    code = "insufficient_funds"
    status_code = 422


class NotCurrentPeriodError(LedgerError):
    code = "not_current_period"
    status_code = 409


class NoOpenPeriodError(LedgerError):
    code = "no_open_period"
    status_code = 409


class StorageError(LedgerError):
    """Persistence failure.  Fatal for the request, never retried."""

    code = "storage_error"
    status_code = 500
