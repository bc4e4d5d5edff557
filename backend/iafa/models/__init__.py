from iafa.models.audit import AuditLog
from iafa.models.donor import Booklet, Donor
from iafa.models.ledger import Account, LedgerHead
from iafa.models.period import AccountingPeriod, PeriodClosureLog
from iafa.models.snapshot import MonthlyLedgerBalance
from iafa.models.transaction import Cheque, Transaction, TransactionItem
from iafa.models.user import User

__all__ = [
    # Ledger store
    "Account",
    "LedgerHead",
    # Transactions
    "Transaction",
    "TransactionItem",
    "Cheque",
    # Snapshots and periods
    "MonthlyLedgerBalance",
    "AccountingPeriod",
    "PeriodClosureLog",
    # Receipts
    "Donor",
    "Booklet",
    # Users and audit
    "User",
    "AuditLog",
]
