"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import (
    Account,
    AccountCategory,
    AccountTag,
    AccountType,
    NormalBalance,
)
from ledger_kernel.models.bank import (
    BankAccount,
    BankTransaction,
    Reconciliation,
    ReconciliationStatus,
)
from ledger_kernel.models.cost_center import CostCenter
from ledger_kernel.models.fiscal_period import FiscalPeriod, FiscalYear, PeriodStatus
from ledger_kernel.models.journal import (
    EntryType,
    JournalEntry,
    JournalEntryStatus,
    LedgerLine,
    LineSide,
)
from ledger_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "Account",
    "AccountCategory",
    "AccountTag",
    "AccountType",
    "NormalBalance",
    "BankAccount",
    "BankTransaction",
    "Reconciliation",
    "ReconciliationStatus",
    "CostCenter",
    "FiscalPeriod",
    "FiscalYear",
    "PeriodStatus",
    "EntryType",
    "JournalEntry",
    "JournalEntryStatus",
    "LedgerLine",
    "LineSide",
    "SequenceCounter",
]
