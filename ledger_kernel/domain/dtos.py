"""
DTOs -- immutable data crossing the kernel boundary.

Responsibility:
    Input descriptors (LineSpec, AccountUpdate, BankTransactionSpec,
    MatchPair) and read-side snapshots (AccountInfo, JournalEntryInfo,
    FiscalPeriodInfo, ...) returned by services.  Callers never receive ORM
    instances.

Architecture position:
    Kernel > Domain.  ``from_model`` class methods are boundary converters
    called from services and selectors only.

Invariants enforced:
    - Amount fields of read-side DTOs are rounded to the ledger scale, so
      storage precision (Numeric(38, 9)) never leaks to callers.
    - AccountUpdate enumerates every mutable account field; nothing else can
      be changed through the registry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from ledger_kernel.db.types import ZERO, round_money

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.account import AccountType as AccountTypeModel
    from ledger_kernel.models.bank import BankAccount as BankAccountModel
    from ledger_kernel.models.bank import BankTransaction as BankTransactionModel
    from ledger_kernel.models.bank import Reconciliation as ReconciliationModel
    from ledger_kernel.models.cost_center import CostCenter as CostCenterModel
    from ledger_kernel.models.fiscal_period import FiscalPeriod as FiscalPeriodModel
    from ledger_kernel.models.fiscal_period import FiscalYear as FiscalYearModel
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LineSpec:
    """
    One requested ledger line.

    Exactly one of ``debit`` / ``credit`` must be non-zero; LedgerPoster
    validates this together with the rest of the entry.
    """

    account_id: UUID
    debit: Decimal | int | str = ZERO
    credit: Decimal | int | str = ZERO
    memo: str | None = None
    cost_center_code: str | None = None

    @classmethod
    def debit_line(cls, account_id: UUID, amount, memo: str | None = None, **kwargs) -> LineSpec:
        return cls(account_id=account_id, debit=amount, memo=memo, **kwargs)

    @classmethod
    def credit_line(cls, account_id: UUID, amount, memo: str | None = None, **kwargs) -> LineSpec:
        return cls(account_id=account_id, credit=amount, memo=memo, **kwargs)


@dataclass(frozen=True)
class AccountUpdate:
    """
    Explicit partial update for an account.

    ``None`` means "leave unchanged".  ``clear_parent`` moves the account to
    the root of the tree and cannot be combined with ``parent_id``.
    """

    name: str | None = None
    description: str | None = None
    parent_id: UUID | None = None
    clear_parent: bool = False
    tags: tuple[str, ...] | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.name is None
            and self.description is None
            and self.parent_id is None
            and not self.clear_parent
            and self.tags is None
        )


@dataclass(frozen=True)
class BankTransactionSpec:
    """One bank statement line to import."""

    transaction_date: date
    amount: Decimal | int | str
    reference: str | None = None
    description: str | None = None


@dataclass(frozen=True)
class MatchPair:
    """A (bank transaction, ledger line) pairing submitted for reconciliation."""

    bank_transaction_id: UUID
    ledger_line_id: UUID


# ---------------------------------------------------------------------------
# Chart of accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountTypeInfo:
    id: UUID
    tenant_id: str
    code: str
    name: str
    category: str
    normal_balance: str

    @classmethod
    def from_model(cls, model: AccountTypeModel) -> AccountTypeInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            category=model.category.value,
            normal_balance=model.normal_balance.value,
        )


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of an account row."""

    id: UUID
    tenant_id: str
    code: str
    name: str
    account_type_code: str
    category: str
    normal_balance: str
    is_header: bool
    is_active: bool
    current_balance: Decimal
    opening_balance: Decimal
    parent_id: UUID | None = None
    opening_balance_date: date | None = None
    description: str | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            account_type_code=model.account_type.code,
            category=model.category.value,
            normal_balance=model.normal_balance.value,
            is_header=model.is_header,
            is_active=model.is_active,
            current_balance=round_money(model.current_balance),
            opening_balance=round_money(model.opening_balance),
            parent_id=model.parent_id,
            opening_balance_date=model.opening_balance_date,
            description=model.description,
            tags=tuple(model.tags or ()),
        )


@dataclass(frozen=True)
class AccountBalanceInfo:
    """Balance of one account (or a header's subtree) as of a date."""

    account_id: UUID
    account_code: str
    as_of_date: date
    opening_balance: Decimal
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal
    normal_balance: str
    includes_subtree: bool = False


@dataclass(frozen=True)
class CostCenterInfo:
    id: UUID
    tenant_id: str
    code: str
    name: str
    is_active: bool

    @classmethod
    def from_model(cls, model: CostCenterModel) -> CostCenterInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            is_active=model.is_active,
        )


# ---------------------------------------------------------------------------
# Journal
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LedgerLineInfo:
    id: UUID
    account_id: UUID
    debit_amount: Decimal
    credit_amount: Decimal
    line_seq: int
    memo: str | None = None
    cost_center_id: UUID | None = None
    is_reconciled: bool = False


@dataclass(frozen=True)
class JournalEntryInfo:
    """Snapshot of a journal entry and its lines."""

    id: UUID
    tenant_id: str
    entry_number: str
    entry_date: date
    status: str
    entry_type: str
    lines: tuple[LedgerLineInfo, ...]
    reference: str | None = None
    description: str | None = None
    reversal_of_id: UUID | None = None
    idempotency_key: str | None = None
    posted_at: datetime | None = None

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit_amount for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit_amount for line in self.lines), ZERO)

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryInfo:
        lines = tuple(
            LedgerLineInfo(
                id=line.id,
                account_id=line.account_id,
                debit_amount=round_money(line.debit_amount),
                credit_amount=round_money(line.credit_amount),
                line_seq=line.line_seq,
                memo=line.memo,
                cost_center_id=line.cost_center_id,
                is_reconciled=line.is_reconciled,
            )
            for line in sorted(model.lines, key=lambda x: x.line_seq)
        )
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            entry_number=model.entry_number,
            entry_date=model.entry_date,
            status=model.status.value,
            entry_type=model.entry_type.value,
            lines=lines,
            reference=model.reference,
            description=model.description,
            reversal_of_id=model.reversal_of_id,
            idempotency_key=model.idempotency_key,
            posted_at=model.posted_at,
        )


# ---------------------------------------------------------------------------
# Fiscal calendar
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FiscalPeriodInfo:
    id: UUID
    fiscal_year_id: UUID
    period_number: int
    period_code: str
    name: str
    start_date: date
    end_date: date
    status: str
    closed_at: datetime | None = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: FiscalPeriodModel) -> FiscalPeriodInfo:
        return cls(
            id=model.id,
            fiscal_year_id=model.fiscal_year_id,
            period_number=model.period_number,
            period_code=model.period_code,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            status=model.status.value,
            closed_at=model.closed_at,
        )


@dataclass(frozen=True)
class FiscalYearInfo:
    id: UUID
    tenant_id: str
    name: str
    start_date: date
    end_date: date
    status: str
    periods: tuple[FiscalPeriodInfo, ...] = ()
    closed_at: datetime | None = None
    closing_entry_id: UUID | None = None

    @property
    def is_closed(self) -> bool:
        return self.status == "closed"

    @classmethod
    def from_model(cls, model: FiscalYearModel) -> FiscalYearInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            name=model.name,
            start_date=model.start_date,
            end_date=model.end_date,
            status=model.status.value,
            periods=tuple(FiscalPeriodInfo.from_model(p) for p in model.periods),
            closed_at=model.closed_at,
            closing_entry_id=model.closing_entry_id,
        )


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID
    account_code: str
    account_name: str
    category: str
    normal_balance: str
    opening_balance: Decimal
    debit_total: Decimal
    credit_total: Decimal
    balance: Decimal


@dataclass(frozen=True)
class TrialBalance:
    """
    Per-account totals and grand totals as of a date.

    ``total_debits == total_credits`` holds for every valid ledger state.
    """

    tenant_id: str
    as_of_date: date
    rows: tuple[TrialBalanceRow, ...]
    total_debits: Decimal
    total_credits: Decimal

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits

    def row_for(self, account_code: str) -> TrialBalanceRow | None:
        for row in self.rows:
            if row.account_code == account_code:
                return row
        return None


@dataclass(frozen=True)
class StatementLine:
    entry_id: UUID
    entry_number: str
    entry_date: date
    ledger_line_id: UUID
    debit_amount: Decimal
    credit_amount: Decimal
    running_balance: Decimal
    reference: str | None = None
    memo: str | None = None


@dataclass(frozen=True)
class AccountStatement:
    """Account activity between two dates with a running balance."""

    account_id: UUID
    account_code: str
    from_date: date
    to_date: date
    opening_balance: Decimal
    lines: tuple[StatementLine, ...]
    closing_balance: Decimal


# ---------------------------------------------------------------------------
# Banking and reconciliation
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BankAccountInfo:
    id: UUID
    tenant_id: str
    code: str
    name: str
    gl_account_id: UUID
    currency: str
    opening_balance: Decimal
    is_active: bool

    @classmethod
    def from_model(cls, model: BankAccountModel) -> BankAccountInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            code=model.code,
            name=model.name,
            gl_account_id=model.gl_account_id,
            currency=model.currency,
            opening_balance=round_money(model.opening_balance),
            is_active=model.is_active,
        )


@dataclass(frozen=True)
class BankTransactionInfo:
    id: UUID
    bank_account_id: UUID
    transaction_date: date
    amount: Decimal
    is_reconciled: bool
    reference: str | None = None
    description: str | None = None
    reconciliation_id: UUID | None = None
    matched_ledger_line_id: UUID | None = None

    @classmethod
    def from_model(cls, model: BankTransactionModel) -> BankTransactionInfo:
        return cls(
            id=model.id,
            bank_account_id=model.bank_account_id,
            transaction_date=model.transaction_date,
            amount=round_money(model.amount),
            is_reconciled=model.is_reconciled,
            reference=model.reference,
            description=model.description,
            reconciliation_id=model.reconciliation_id,
            matched_ledger_line_id=model.matched_ledger_line_id,
        )


@dataclass(frozen=True)
class ImportResult:
    """Outcome of a bank statement import; duplicates are skipped, not fatal."""

    imported: tuple[BankTransactionInfo, ...]
    duplicates: tuple[BankTransactionSpec, ...] = field(default_factory=tuple)

    @property
    def imported_count(self) -> int:
        return len(self.imported)

    @property
    def duplicate_count(self) -> int:
        return len(self.duplicates)


@dataclass(frozen=True)
class ReconciliationInfo:
    id: UUID
    tenant_id: str
    bank_account_id: UUID
    statement_date: date
    statement_balance: Decimal
    opening_balance: Decimal
    status: str
    reconciled_balance: Decimal | None = None
    completed_at: datetime | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ReconciliationModel) -> ReconciliationInfo:
        return cls(
            id=model.id,
            tenant_id=model.tenant_id,
            bank_account_id=model.bank_account_id,
            statement_date=model.statement_date,
            statement_balance=round_money(model.statement_balance),
            opening_balance=round_money(model.opening_balance),
            status=model.status.value,
            reconciled_balance=(
                round_money(model.reconciled_balance)
                if model.reconciled_balance is not None
                else None
            ),
            completed_at=model.completed_at,
            cancelled_at=model.cancelled_at,
        )


@dataclass(frozen=True)
class ReconciliationSummary:
    """Progress of a reconciliation session."""

    reconciliation: ReconciliationInfo
    matched_count: int
    matched_total: Decimal
    reconciled_balance: Decimal
    difference: Decimal
    matched_transactions: tuple[BankTransactionInfo, ...]
    outstanding_bank_transactions: tuple[BankTransactionInfo, ...]
    outstanding_ledger_line_ids: tuple[UUID, ...]

    @property
    def is_balanced(self) -> bool:
        return self.difference == ZERO
