"""
Typed Exception Hierarchy for the Ledger Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers of the ledger (the service layer, batch jobs, reconciliation UIs)
must be able to react to a failure by its type and structured attributes,
never by parsing a message string:

    try:
        poster.post(tenant_id, entry_date, lines)
    except PeriodClosedError as e:
        notify(f"Period {e.period_code} is closed")
    except LedgerInvariantError as e:
        respond(code=e.code)

Every class carries a machine-readable ``code`` class attribute and stores
its context as instance attributes.  ``ledger_services.ledger_core`` turns
any ``LedgerError`` into an ``OperationResult`` failure value; kernel
services simply raise.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- ValidationError
    |
    +-- LedgerInvariantError
    |   +-- ImbalancedEntryError
    |   +-- UnknownAccountError
    |   +-- HeaderAccountNotPostableError
    |   +-- AccountInUseError
    |   +-- DuplicateCodeError
    |   +-- CycleError
    |   +-- EntryNotFoundError
    |   +-- AlreadyReversedError
    |
    +-- PeriodError
    |   +-- PeriodClosedError
    |   +-- SequentialCloseViolationError
    |   +-- AlreadyClosedError
    |   +-- PeriodNotFoundError
    |   +-- FiscalYearNotFoundError
    |   +-- PeriodOverlapError
    |   +-- UnpostedEntriesError
    |
    +-- ReconciliationError
    |   +-- AlreadyReconciledError
    |   +-- ReconciliationBalanceMismatchError
    |   +-- ReconciliationNotFoundError
    |   +-- ReconciliationStateError
    |   +-- ReconciliationInProgressError
    |   +-- BankAccountNotFoundError
    |   +-- DuplicateBankTransactionError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                           | When Raised
----------------|--------------------------------|--------------------------------------
Input           | VALIDATION_ERROR               | Malformed input (amount, date, shape)
----------------|--------------------------------|--------------------------------------
Ledger          | IMBALANCED_ENTRY               | Debits != Credits
                | UNKNOWN_ACCOUNT                | Account id not found in tenant
                | HEADER_ACCOUNT_NOT_POSTABLE    | Posting to an aggregator account
                | ACCOUNT_IN_USE                 | Deactivating a used account
                | DUPLICATE_CODE                 | (tenant, code) already exists
                | ACCOUNT_CYCLE                  | Parent would create a cycle
                | ENTRY_NOT_FOUND                | Journal entry id not found
                | ALREADY_REVERSED               | Entry was already reversed
----------------|--------------------------------|--------------------------------------
Period          | PERIOD_CLOSED                  | Posting into a closed period
                | SEQUENTIAL_CLOSE_VIOLATION     | Out-of-order close/reopen
                | ALREADY_CLOSED                 | Closing twice / reopening in closed year
                | PERIOD_NOT_FOUND               | No period covers the date
                | FISCAL_YEAR_NOT_FOUND          | Fiscal year id not found
                | PERIOD_OVERLAP                 | Fiscal years overlap
                | UNPOSTED_ENTRIES               | Drafts remain in period (soft check)
----------------|--------------------------------|--------------------------------------
Reconciliation  | ALREADY_RECONCILED             | Item matched by another session
                | RECONCILIATION_BALANCE_MISMATCH| Book balance != statement balance
                | RECONCILIATION_NOT_FOUND       | Session id not found
                | RECONCILIATION_STATE           | Operation not allowed in status
                | RECONCILIATION_IN_PROGRESS     | Bank account already has a session
                | BANK_ACCOUNT_NOT_FOUND         | Bank account id not found
                | DUPLICATE_BANK_TRANSACTION     | Same date, amount and reference
----------------|--------------------------------|--------------------------------------
Immutability    | IMMUTABILITY_VIOLATION         | Modifying a posted/completed record
"""

from collections.abc import Sequence


class LedgerError(Exception):
    """
    Base exception for all ledger kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "LEDGER_ERROR"


class ValidationError(LedgerError):
    """Input failed shape or value validation."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


# Ledger invariant exceptions


class LedgerInvariantError(LedgerError):
    """Base for chart-of-accounts and posting invariant violations."""

    code: str = "LEDGER_INVARIANT_ERROR"


class ImbalancedEntryError(LedgerInvariantError):
    """Journal entry debits do not equal credits."""

    code: str = "IMBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str):
        self.debits = debits
        self.credits = credits
        super().__init__(f"Imbalanced entry: debits={debits}, credits={credits}")


class UnknownAccountError(LedgerInvariantError):
    """Referenced account does not exist for the tenant."""

    code: str = "UNKNOWN_ACCOUNT"

    def __init__(self, account_ref: str, tenant_id: str | None = None):
        self.account_ref = account_ref
        self.tenant_id = tenant_id
        super().__init__(f"Unknown account: {account_ref}")


class HeaderAccountNotPostableError(LedgerInvariantError):
    """Attempted to post directly to a header (aggregator) account."""

    code: str = "HEADER_ACCOUNT_NOT_POSTABLE"

    def __init__(self, account_id: str, account_code: str):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account {account_code} is a header account and cannot be posted to")


class AccountInUseError(LedgerInvariantError):
    """Account cannot be deactivated while it carries a balance or active children."""

    code: str = "ACCOUNT_IN_USE"

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id} is in use: {reason}")


class DuplicateCodeError(LedgerInvariantError):
    """Code already exists within the tenant."""

    code: str = "DUPLICATE_CODE"

    def __init__(self, entity_type: str, entity_code: str, tenant_id: str):
        self.entity_type = entity_type
        self.entity_code = entity_code
        self.tenant_id = tenant_id
        super().__init__(f"{entity_type} code {entity_code!r} already exists for tenant {tenant_id}")


class CycleError(LedgerInvariantError):
    """Parent assignment would create a cycle or cross a tenant boundary."""

    code: str = "ACCOUNT_CYCLE"

    def __init__(self, account_ref: str, parent_id: str, reason: str):
        self.account_ref = account_ref
        self.parent_id = parent_id
        self.reason = reason
        super().__init__(f"Invalid parent {parent_id} for account {account_ref}: {reason}")


class EntryNotFoundError(LedgerInvariantError):
    """Journal entry id not found for the tenant."""

    code: str = "ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class AlreadyReversedError(LedgerInvariantError):
    """Journal entry has already been reversed."""

    code: str = "ALREADY_REVERSED"

    def __init__(self, entry_id: str, reversal_entry_id: str):
        self.entry_id = entry_id
        self.reversal_entry_id = reversal_entry_id
        super().__init__(f"Entry {entry_id} already reversed by {reversal_entry_id}")


# Period-related exceptions


class PeriodError(LedgerError):
    """Base for fiscal period and year errors."""

    code: str = "PERIOD_ERROR"


class PeriodClosedError(PeriodError):
    """Attempted to post into a closed period."""

    code: str = "PERIOD_CLOSED"

    def __init__(self, period_code: str, entry_date: str):
        self.period_code = period_code
        self.entry_date = entry_date
        super().__init__(f"Cannot post to closed period {period_code} (entry_date: {entry_date})")


class SequentialCloseViolationError(PeriodError):
    """Periods must close and reopen in chronological (stack) order."""

    code: str = "SEQUENTIAL_CLOSE_VIOLATION"

    def __init__(self, period_code: str, blocking_periods: Sequence[str], reason: str):
        self.period_code = period_code
        self.blocking_periods = list(blocking_periods)
        self.reason = reason
        super().__init__(
            f"Period {period_code}: {reason} (blocking: {', '.join(self.blocking_periods)})"
        )


class AlreadyClosedError(PeriodError):
    """Period or fiscal year is already closed."""

    code: str = "ALREADY_CLOSED"

    def __init__(self, entity_type: str, entity_code: str):
        self.entity_type = entity_type
        self.entity_code = entity_code
        super().__init__(f"{entity_type} {entity_code} is already closed")


class PeriodNotFoundError(PeriodError):
    """No fiscal period exists for the id or date."""

    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_ref: str):
        self.period_ref = period_ref
        super().__init__(f"No fiscal period found for: {period_ref}")


class FiscalYearNotFoundError(PeriodError):
    """Fiscal year id not found for the tenant."""

    code: str = "FISCAL_YEAR_NOT_FOUND"

    def __init__(self, fiscal_year_id: str):
        self.fiscal_year_id = fiscal_year_id
        super().__init__(f"Fiscal year not found: {fiscal_year_id}")


class PeriodOverlapError(PeriodError):
    """Fiscal year date range overlaps an existing year."""

    code: str = "PERIOD_OVERLAP"

    def __init__(self, name: str, existing_name: str):
        self.name = name
        self.existing_name = existing_name
        super().__init__(f"Fiscal year {name} overlaps existing fiscal year {existing_name}")


class UnpostedEntriesError(PeriodError):
    """Draft entries remain inside a period being closed."""

    code: str = "UNPOSTED_ENTRIES"

    def __init__(self, period_code: str, draft_count: int):
        self.period_code = period_code
        self.draft_count = draft_count
        super().__init__(
            f"Period {period_code} has {draft_count} unposted draft entries; close with force to override"
        )


# Reconciliation exceptions


class ReconciliationError(LedgerError):
    """Base for bank reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class AlreadyReconciledError(ReconciliationError):
    """One or more items were reconciled by another session."""

    code: str = "ALREADY_RECONCILED"

    def __init__(
        self,
        bank_transaction_ids: Sequence[str] = (),
        ledger_line_ids: Sequence[str] = (),
    ):
        self.bank_transaction_ids = list(bank_transaction_ids)
        self.ledger_line_ids = list(ledger_line_ids)
        super().__init__(
            f"Already reconciled: bank transactions {self.bank_transaction_ids}, "
            f"ledger lines {self.ledger_line_ids}"
        )


class ReconciliationBalanceMismatchError(ReconciliationError):
    """Reconciled book balance does not equal the statement balance."""

    code: str = "RECONCILIATION_BALANCE_MISMATCH"

    def __init__(self, reconciliation_id: str, book_balance: str, statement_balance: str):
        self.reconciliation_id = reconciliation_id
        self.book_balance = book_balance
        self.statement_balance = statement_balance
        super().__init__(
            f"Reconciliation {reconciliation_id}: book balance {book_balance} "
            f"!= statement balance {statement_balance}"
        )


class ReconciliationNotFoundError(ReconciliationError):
    """Reconciliation id not found for the tenant."""

    code: str = "RECONCILIATION_NOT_FOUND"

    def __init__(self, reconciliation_id: str):
        self.reconciliation_id = reconciliation_id
        super().__init__(f"Reconciliation not found: {reconciliation_id}")


class ReconciliationStateError(ReconciliationError):
    """Operation is not permitted in the session's current status."""

    code: str = "RECONCILIATION_STATE"

    def __init__(self, reconciliation_id: str, status: str, operation: str):
        self.reconciliation_id = reconciliation_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} reconciliation {reconciliation_id} in status {status}")


class ReconciliationInProgressError(ReconciliationError):
    """Bank account already has an active reconciliation session."""

    code: str = "RECONCILIATION_IN_PROGRESS"

    def __init__(self, bank_account_id: str, reconciliation_id: str):
        self.bank_account_id = bank_account_id
        self.reconciliation_id = reconciliation_id
        super().__init__(
            f"Bank account {bank_account_id} already has active reconciliation {reconciliation_id}"
        )


class BankAccountNotFoundError(ReconciliationError):
    """Bank account id not found for the tenant."""

    code: str = "BANK_ACCOUNT_NOT_FOUND"

    def __init__(self, bank_account_id: str):
        self.bank_account_id = bank_account_id
        super().__init__(f"Bank account not found: {bank_account_id}")


class DuplicateBankTransactionError(ReconciliationError):
    """A transaction with the same date, amount and reference already exists."""

    code: str = "DUPLICATE_BANK_TRANSACTION"

    def __init__(self, bank_account_id: str, transaction_date: str, amount: str, reference: str | None):
        self.bank_account_id = bank_account_id
        self.transaction_date = transaction_date
        self.amount = amount
        self.reference = reference
        super().__init__(
            f"Duplicate bank transaction on {transaction_date} for {amount} (reference={reference!r})"
        )


# Immutability


class ImmutabilityViolationError(LedgerError):
    """Attempted to modify a posted entry or completed reconciliation."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
