"""
ledger_services.ledger_core
===========================

Responsibility:
    The public facade of the ledger.  Every method takes an explicit
    ``tenant_id``, runs in its own database transaction, and returns an
    ``OperationResult``: success with a frozen DTO, or failure carrying the
    typed ``LedgerError`` that caused the rollback.

Architecture:
    Services layer, top.  Owns the transaction boundary (``session_scope``)
    and the unit of work that wires kernel services, the matcher, the
    reconciliation session and the year-end closer onto one session, one
    clock and one event buffer.

Invariants enforced:
    - One call, one transaction: commit on success, rollback on any error.
    - Domain events are published only after the commit succeeds.
    - ``LedgerError`` becomes ``OperationResult.failure``; infrastructure
      errors (SQLAlchemyError, ...) propagate unchanged.
    - The tenant id is bound to the log context for the whole call.

Usage::

    core = LedgerCore(get_session_factory(), clock=SystemClock())
    result = core.post("acme", date(2024, 3, 5), [
        LineSpec.debit_line(cash_id, Decimal("100.00")),
        LineSpec.credit_line(revenue_id, Decimal("100.00")),
    ])
    if not result.is_success:
        print(result.error_code)
"""

from __future__ import annotations

import time
from collections.abc import Callable, Sequence
from datetime import date
from decimal import Decimal
from functools import cached_property
from typing import TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session, sessionmaker

from ledger_config.schema import LedgerSettings
from ledger_engines.matching import MatchSuggestions
from ledger_kernel.db.engine import create_tables, get_session_factory, init_engine_from_url, session_scope
from ledger_kernel.db.immutability import register_immutability_listeners
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    AccountBalanceInfo,
    AccountInfo,
    AccountStatement,
    AccountTypeInfo,
    AccountUpdate,
    BankAccountInfo,
    BankTransactionInfo,
    BankTransactionSpec,
    CostCenterInfo,
    FiscalPeriodInfo,
    FiscalYearInfo,
    ImportResult,
    JournalEntryInfo,
    LineSpec,
    MatchPair,
    ReconciliationInfo,
    ReconciliationSummary,
    TrialBalance,
)
from ledger_kernel.domain.events import EventBuffer, EventPublisher, LoggingEventPublisher
from ledger_kernel.domain.results import OperationResult
from ledger_kernel.exceptions import LedgerError
from ledger_kernel.logging_config import LogContext, configure_logging, get_logger
from ledger_kernel.models.account import AccountCategory, NormalBalance
from ledger_kernel.models.journal import JournalEntryStatus
from ledger_kernel.selectors.trial_balance import TrialBalanceCalculator
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.bank_account_service import BankAccountService
from ledger_kernel.services.cost_center_service import CostCenterService
from ledger_kernel.services.fiscal_period_manager import FiscalPeriodManager
from ledger_kernel.services.ledger_poster import LedgerPoster
from ledger_services.bank_statement_matcher import BankStatementMatcher
from ledger_services.reconciliation_session import ReconciliationSession
from ledger_services.year_end_closer import YearEndCloser

logger = get_logger("services.ledger_core")

T = TypeVar("T")


class _UnitOfWork:
    """Services bound to one session, clock and event buffer."""

    def __init__(self, session: Session, clock: Clock, events: EventBuffer, settings: LedgerSettings):
        self.session = session
        self.clock = clock
        self.events = events
        self.settings = settings

    @cached_property
    def registry(self) -> AccountRegistry:
        return AccountRegistry(self.session, self.clock)

    @cached_property
    def periods(self) -> FiscalPeriodManager:
        return FiscalPeriodManager(self.session, self.clock, self.events)

    @cached_property
    def poster(self) -> LedgerPoster:
        return LedgerPoster(
            self.session,
            self.clock,
            self.events,
            periods=self.periods,
            entry_number_prefix=self.settings.entry_number_prefix,
        )

    @cached_property
    def trial_balance(self) -> TrialBalanceCalculator:
        return TrialBalanceCalculator(self.session)

    @cached_property
    def cost_centers(self) -> CostCenterService:
        return CostCenterService(self.session, self.clock)

    @cached_property
    def banks(self) -> BankAccountService:
        return BankAccountService(self.session, self.clock)

    @cached_property
    def matcher(self) -> BankStatementMatcher:
        return BankStatementMatcher(self.session, self.settings.match_window_days)

    @cached_property
    def reconciliation(self) -> ReconciliationSession:
        return ReconciliationSession(self.session, self.clock, self.events)

    @cached_property
    def closer(self) -> YearEndCloser:
        return YearEndCloser(
            self.session,
            self.clock,
            self.events,
            poster=self.poster,
            retained_earnings_tag=self.settings.retained_earnings_tag,
        )


class LedgerCore:
    """
    Transactional facade over the ledger.

    Contract:
        Each public method is one transaction and returns an
        OperationResult; it never leaves a session open.
        Building a facade registers the immutability listeners.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        settings: LedgerSettings | None = None,
    ):
        self._session_factory = session_factory or get_session_factory()
        self._clock = clock or SystemClock()
        self._publisher = publisher or LoggingEventPublisher()
        self._settings = settings or LedgerSettings()
        register_immutability_listeners()

    @classmethod
    def from_settings(
        cls,
        settings: LedgerSettings,
        clock: Clock | None = None,
        publisher: EventPublisher | None = None,
        create_schema: bool = False,
    ) -> LedgerCore:
        """Configure logging and the engine from ``settings`` and build a facade."""
        configure_logging(level=settings.log_level_number)
        init_engine_from_url(settings.database_url, echo=settings.echo_sql, pool_size=settings.pool_size)
        if create_schema:
            create_tables()
        return cls(get_session_factory(), clock=clock, publisher=publisher, settings=settings)

    # ------------------------------------------------------------------
    # Unit-of-work runner
    # ------------------------------------------------------------------

    def _run(self, operation: str, tenant_id: str | None, work: Callable[[_UnitOfWork], T]) -> OperationResult[T]:
        events = EventBuffer()
        t0 = time.monotonic()
        with LogContext.bind(tenant_id=tenant_id, correlation_id=str(uuid4())):
            try:
                with session_scope(self._session_factory) as session:
                    value = work(_UnitOfWork(session, self._clock, events, self._settings))
            except LedgerError as exc:
                logger.warning(
                    "operation_rejected",
                    extra={
                        "operation": operation,
                        "error_code": exc.code,
                        "error_message": str(exc),
                    },
                )
                return OperationResult.failure(exc)

            for event in events.drain():
                self._publisher.publish(event)

            logger.debug(
                "operation_completed",
                extra={
                    "operation": operation,
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            return OperationResult.success(value)

    # ------------------------------------------------------------------
    # Chart of accounts
    # ------------------------------------------------------------------

    def seed_account_types(self, tenant_id: str) -> OperationResult[list[AccountTypeInfo]]:
        return self._run("seed_account_types", tenant_id, lambda uow: uow.registry.seed_default_account_types(tenant_id))

    def create_account_type(
        self,
        tenant_id: str,
        code: str,
        name: str,
        category: AccountCategory | str,
        normal_balance: NormalBalance | str | None = None,
    ) -> OperationResult[AccountTypeInfo]:
        return self._run(
            "create_account_type",
            tenant_id,
            lambda uow: uow.registry.create_account_type(tenant_id, code, name, category, normal_balance),
        )

    def create_account(
        self,
        tenant_id: str,
        code: str,
        name: str,
        account_type_code: str,
        parent_id: UUID | None = None,
        is_header: bool = False,
        opening_balance: Decimal | int | str = Decimal("0"),
        opening_balance_date: date | None = None,
        description: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> OperationResult[AccountInfo]:
        return self._run(
            "create_account",
            tenant_id,
            lambda uow: uow.registry.create_account(
                tenant_id,
                code,
                name,
                account_type_code,
                parent_id=parent_id,
                is_header=is_header,
                opening_balance=opening_balance,
                opening_balance_date=opening_balance_date,
                description=description,
                tags=tags,
            ),
        )

    def get_account(self, tenant_id: str, account_id: UUID) -> OperationResult[AccountInfo]:
        return self._run("get_account", tenant_id, lambda uow: uow.registry.get_account(tenant_id, account_id))

    def get_account_by_code(self, tenant_id: str, code: str) -> OperationResult[AccountInfo]:
        return self._run(
            "get_account_by_code", tenant_id, lambda uow: uow.registry.get_account_by_code(tenant_id, code)
        )

    def get_children(self, tenant_id: str, account_id: UUID) -> OperationResult[list[AccountInfo]]:
        """Direct children of an account, ordered by code."""
        return self._run("get_children", tenant_id, lambda uow: uow.registry.get_children(tenant_id, account_id))

    def get_account_types(self, tenant_id: str) -> OperationResult[list[AccountTypeInfo]]:
        return self._run("get_account_types", tenant_id, lambda uow: uow.registry.get_account_types(tenant_id))

    def get_accounts(
        self,
        tenant_id: str,
        category: AccountCategory | str | None = None,
        active_only: bool = False,
    ) -> OperationResult[list[AccountInfo]]:
        return self._run(
            "get_accounts",
            tenant_id,
            lambda uow: uow.registry.get_accounts(tenant_id, category=category, active_only=active_only),
        )

    def update_account(self, tenant_id: str, account_id: UUID, update: AccountUpdate) -> OperationResult[AccountInfo]:
        return self._run(
            "update_account", tenant_id, lambda uow: uow.registry.update_account(tenant_id, account_id, update)
        )

    def deactivate_account(self, tenant_id: str, account_id: UUID) -> OperationResult[AccountInfo]:
        return self._run("deactivate_account", tenant_id, lambda uow: uow.registry.deactivate(tenant_id, account_id))

    def compute_balance(self, tenant_id: str, account_id: UUID, as_of_date: date) -> OperationResult[AccountBalanceInfo]:
        return self._run(
            "compute_balance",
            tenant_id,
            lambda uow: uow.registry.compute_balance(tenant_id, account_id, as_of_date),
        )

    def create_cost_center(self, tenant_id: str, code: str, name: str) -> OperationResult[CostCenterInfo]:
        return self._run("create_cost_center", tenant_id, lambda uow: uow.cost_centers.create(tenant_id, code, name))

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        reference: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> OperationResult[JournalEntryInfo]:
        return self._run(
            "post",
            tenant_id,
            lambda uow: uow.poster.post(
                tenant_id,
                entry_date,
                lines,
                reference=reference,
                description=description,
                idempotency_key=idempotency_key,
            ),
        )

    def save_draft(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        reference: str | None = None,
        description: str | None = None,
    ) -> OperationResult[JournalEntryInfo]:
        return self._run(
            "save_draft",
            tenant_id,
            lambda uow: uow.poster.save_draft(tenant_id, entry_date, lines, reference=reference, description=description),
        )

    def post_draft(self, tenant_id: str, entry_id: UUID) -> OperationResult[JournalEntryInfo]:
        return self._run("post_draft", tenant_id, lambda uow: uow.poster.post_draft(tenant_id, entry_id))

    def discard_draft(self, tenant_id: str, entry_id: UUID) -> OperationResult[None]:
        return self._run("discard_draft", tenant_id, lambda uow: uow.poster.discard_draft(tenant_id, entry_id))

    def reverse_entry(
        self,
        tenant_id: str,
        entry_id: UUID,
        reversal_date: date | None = None,
        description: str | None = None,
    ) -> OperationResult[JournalEntryInfo]:
        return self._run(
            "reverse_entry",
            tenant_id,
            lambda uow: uow.poster.reverse(tenant_id, entry_id, reversal_date=reversal_date, description=description),
        )

    def get_entry(self, tenant_id: str, entry_id: UUID) -> OperationResult[JournalEntryInfo]:
        return self._run("get_entry", tenant_id, lambda uow: uow.poster.get_entry(tenant_id, entry_id))

    def list_entries(
        self,
        tenant_id: str,
        from_date: date | None = None,
        to_date: date | None = None,
        status: JournalEntryStatus | None = None,
    ) -> OperationResult[list[JournalEntryInfo]]:
        return self._run(
            "list_entries",
            tenant_id,
            lambda uow: uow.poster.list_entries(tenant_id, from_date=from_date, to_date=to_date, status=status),
        )

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def trial_balance(self, tenant_id: str, as_of_date: date, include_zero: bool = False) -> OperationResult[TrialBalance]:
        return self._run(
            "trial_balance",
            tenant_id,
            lambda uow: uow.trial_balance.trial_balance(tenant_id, as_of_date, include_zero=include_zero),
        )

    def account_statement(
        self,
        tenant_id: str,
        account_id: UUID,
        from_date: date,
        to_date: date,
    ) -> OperationResult[AccountStatement]:
        return self._run(
            "account_statement",
            tenant_id,
            lambda uow: uow.trial_balance.account_statement(tenant_id, account_id, from_date, to_date),
        )

    def ledger_totals(self) -> OperationResult[tuple[Decimal, Decimal]]:
        """Global debit and credit totals across all tenants."""
        return self._run("ledger_totals", None, lambda uow: uow.trial_balance.ledger_totals())

    # ------------------------------------------------------------------
    # Fiscal calendar
    # ------------------------------------------------------------------

    def create_fiscal_year(
        self,
        tenant_id: str,
        name: str,
        start_date: date,
        end_date: date,
    ) -> OperationResult[FiscalYearInfo]:
        return self._run(
            "create_fiscal_year",
            tenant_id,
            lambda uow: uow.periods.create_fiscal_year(tenant_id, name, start_date, end_date),
        )

    def get_fiscal_year(self, tenant_id: str, fiscal_year_id: UUID) -> OperationResult[FiscalYearInfo]:
        return self._run(
            "get_fiscal_year", tenant_id, lambda uow: uow.periods.get_fiscal_year(tenant_id, fiscal_year_id)
        )

    def list_fiscal_years(self, tenant_id: str) -> OperationResult[list[FiscalYearInfo]]:
        return self._run("list_fiscal_years", tenant_id, lambda uow: uow.periods.list_fiscal_years(tenant_id))

    def list_periods(self, tenant_id: str, fiscal_year_id: UUID | None = None) -> OperationResult[list[FiscalPeriodInfo]]:
        return self._run("list_periods", tenant_id, lambda uow: uow.periods.list_periods(tenant_id, fiscal_year_id))

    def current_period(self, tenant_id: str) -> OperationResult[FiscalPeriodInfo]:
        return self._run("current_period", tenant_id, lambda uow: uow.periods.current_period(tenant_id))

    def close_period(self, tenant_id: str, period_id: UUID, force: bool = False) -> OperationResult[FiscalPeriodInfo]:
        return self._run(
            "close_period", tenant_id, lambda uow: uow.periods.close_period(tenant_id, period_id, force=force)
        )

    def reopen_period(self, tenant_id: str, period_id: UUID) -> OperationResult[FiscalPeriodInfo]:
        return self._run("reopen_period", tenant_id, lambda uow: uow.periods.reopen_period(tenant_id, period_id))

    def close_year(
        self,
        tenant_id: str,
        fiscal_year_id: UUID,
        retained_earnings_account_id: UUID | None = None,
    ) -> OperationResult[FiscalYearInfo]:
        return self._run(
            "close_year",
            tenant_id,
            lambda uow: uow.closer.close_year(tenant_id, fiscal_year_id, retained_earnings_account_id),
        )

    # ------------------------------------------------------------------
    # Banking
    # ------------------------------------------------------------------

    def create_bank_account(
        self,
        tenant_id: str,
        code: str,
        name: str,
        gl_account_id: UUID,
        currency: str | None = None,
        opening_balance: Decimal | int | str = Decimal("0"),
    ) -> OperationResult[BankAccountInfo]:
        return self._run(
            "create_bank_account",
            tenant_id,
            lambda uow: uow.banks.create_bank_account(
                tenant_id,
                code,
                name,
                gl_account_id,
                currency=currency or self._settings.default_currency,
                opening_balance=opening_balance,
            ),
        )

    def get_bank_account(self, tenant_id: str, bank_account_id: UUID) -> OperationResult[BankAccountInfo]:
        return self._run(
            "get_bank_account", tenant_id, lambda uow: uow.banks.get_bank_account(tenant_id, bank_account_id)
        )

    def list_bank_accounts(self, tenant_id: str) -> OperationResult[list[BankAccountInfo]]:
        return self._run("list_bank_accounts", tenant_id, lambda uow: uow.banks.list_bank_accounts(tenant_id))

    def list_bank_transactions(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        unreconciled_only: bool = False,
    ) -> OperationResult[list[BankTransactionInfo]]:
        return self._run(
            "list_bank_transactions",
            tenant_id,
            lambda uow: uow.banks.list_transactions(tenant_id, bank_account_id, unreconciled_only=unreconciled_only),
        )

    def record_bank_transaction(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        spec: BankTransactionSpec,
    ) -> OperationResult[BankTransactionInfo]:
        return self._run(
            "record_bank_transaction",
            tenant_id,
            lambda uow: uow.banks.record_transaction(tenant_id, bank_account_id, spec),
        )

    def import_bank_transactions(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        specs: Sequence[BankTransactionSpec],
    ) -> OperationResult[ImportResult]:
        return self._run(
            "import_bank_transactions",
            tenant_id,
            lambda uow: uow.banks.import_transactions(tenant_id, bank_account_id, specs),
        )

    def delete_bank_transaction(self, tenant_id: str, transaction_id: UUID) -> OperationResult[None]:
        return self._run(
            "delete_bank_transaction", tenant_id, lambda uow: uow.banks.delete_transaction(tenant_id, transaction_id)
        )

    def suggest_matches(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        window_days: int | None = None,
        as_of_date: date | None = None,
    ) -> OperationResult[MatchSuggestions]:
        return self._run(
            "suggest_matches",
            tenant_id,
            lambda uow: uow.matcher.suggest_matches(tenant_id, bank_account_id, window_days, as_of_date),
        )

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def start_reconciliation(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        statement_balance: Decimal | int | str,
        statement_date: date,
    ) -> OperationResult[ReconciliationInfo]:
        return self._run(
            "start_reconciliation",
            tenant_id,
            lambda uow: uow.reconciliation.start(tenant_id, bank_account_id, statement_balance, statement_date),
        )

    def apply_matches(
        self,
        tenant_id: str,
        reconciliation_id: UUID,
        pairs: Sequence[MatchPair],
    ) -> OperationResult[ReconciliationSummary]:
        """All pairs in one transaction: every pair applies or none does."""
        return self._run(
            "apply_matches",
            tenant_id,
            lambda uow: uow.reconciliation.apply_matches(tenant_id, reconciliation_id, pairs),
        )

    def apply_match(
        self,
        tenant_id: str,
        reconciliation_id: UUID,
        bank_transaction_id: UUID,
        ledger_line_id: UUID,
    ) -> OperationResult[ReconciliationSummary]:
        """A single pair, committed on its own."""
        return self.apply_matches(
            tenant_id,
            reconciliation_id,
            [MatchPair(bank_transaction_id=bank_transaction_id, ledger_line_id=ledger_line_id)],
        )

    def unmatch(
        self,
        tenant_id: str,
        reconciliation_id: UUID,
        transaction_ids: Sequence[UUID],
    ) -> OperationResult[ReconciliationSummary]:
        return self._run(
            "unmatch",
            tenant_id,
            lambda uow: uow.reconciliation.unmatch(tenant_id, reconciliation_id, transaction_ids),
        )

    def complete_reconciliation(self, tenant_id: str, reconciliation_id: UUID) -> OperationResult[ReconciliationInfo]:
        return self._run(
            "complete_reconciliation",
            tenant_id,
            lambda uow: uow.reconciliation.complete(tenant_id, reconciliation_id),
        )

    def cancel_reconciliation(self, tenant_id: str, reconciliation_id: UUID) -> OperationResult[ReconciliationInfo]:
        return self._run(
            "cancel_reconciliation",
            tenant_id,
            lambda uow: uow.reconciliation.cancel(tenant_id, reconciliation_id),
        )

    def reconciliation_summary(self, tenant_id: str, reconciliation_id: UUID) -> OperationResult[ReconciliationSummary]:
        return self._run(
            "reconciliation_summary",
            tenant_id,
            lambda uow: uow.reconciliation.summary(tenant_id, reconciliation_id),
        )
