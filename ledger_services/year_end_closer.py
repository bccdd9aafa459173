"""
ledger_services.year_end_closer
===============================

Responsibility:
    Closes a fiscal year: moves the net result of every revenue and expense
    account into retained earnings with one closing entry and marks the
    year closed.

Architecture:
    Services layer.  Reads balances through TrialBalanceCalculator, posts
    through LedgerPoster (closing flag) and transitions the year through
    FiscalPeriodManager.  Never commits; the caller's transaction makes the
    entry and the year status one atomic unit.

Invariants enforced:
    - The fiscal year row is locked first, so two concurrent closes
      serialize and the second sees the year closed.
    - A closed year is never closed again; no second closing entry exists.
    - Every period of the year is closed before the year closes.
    - After the close every revenue/expense account balances to zero as of
      the year end, and the closing entry itself balances.

Failure modes:
    - AlreadyClosedError: the year is already closed.
    - SequentialCloseViolationError: open periods remain.
    - ValidationError: no (or an ambiguous, or an unusable) retained
      earnings account.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import FiscalYearInfo, LineSpec
from ledger_kernel.domain.events import YEAR_CLOSED, DomainEvent, EventBuffer
from ledger_kernel.exceptions import AlreadyClosedError, SequentialCloseViolationError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountCategory, AccountTag
from ledger_kernel.selectors.trial_balance import TrialBalanceCalculator
from ledger_kernel.services.account_registry import AccountRegistry
from ledger_kernel.services.fiscal_period_manager import FiscalPeriodManager
from ledger_kernel.services.ledger_poster import LedgerPoster

logger = get_logger("services.year_end_closer")

_TEMPORARY_CATEGORIES = (AccountCategory.REVENUE.value, AccountCategory.EXPENSE.value)


class YearEndCloser:
    """
    Posts the closing entry for a fiscal year.

    Contract:
        Either the closing entry is posted and the year is closed, or
        nothing changes.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
        poster: LedgerPoster | None = None,
        retained_earnings_tag: str = AccountTag.RETAINED_EARNINGS.value,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._events = events if events is not None else EventBuffer()
        self._periods = FiscalPeriodManager(session, self._clock, self._events)
        self._poster = poster or LedgerPoster(session, self._clock, self._events, periods=self._periods)
        self._registry = AccountRegistry(session, self._clock)
        self._trial_balance = TrialBalanceCalculator(session)
        self._retained_earnings_tag = retained_earnings_tag

    def close_year(
        self,
        tenant_id: str,
        fiscal_year_id: UUID,
        retained_earnings_account_id: UUID | None = None,
    ) -> FiscalYearInfo:
        fiscal_year = self._periods.lock_fiscal_year(tenant_id, fiscal_year_id)
        if fiscal_year.is_closed:
            raise AlreadyClosedError("FiscalYear", fiscal_year.name)

        open_periods = [p.period_code for p in fiscal_year.periods if p.is_open]
        if open_periods:
            raise SequentialCloseViolationError(
                fiscal_year.name, open_periods, "every period must be closed before the year"
            )

        trial_balance = self._trial_balance.trial_balance(tenant_id, fiscal_year.end_date)
        lines: list[LineSpec] = []
        net_income = ZERO
        for row in trial_balance.rows:
            if row.category not in _TEMPORARY_CATEGORIES or row.balance == ZERO:
                continue
            # Net income is the credit-positive sum over revenue and expense
            net_income -= row.balance if row.normal_balance == "debit" else -row.balance
            lines.append(self._zeroing_line(row.account_id, row.balance, row.normal_balance))

        closing_entry_id = None
        if lines or retained_earnings_account_id is not None:
            retained_earnings = self._resolve_retained_earnings(tenant_id, retained_earnings_account_id)
        if lines:
            if net_income > ZERO:
                lines.append(LineSpec.credit_line(retained_earnings.id, net_income, memo="Net income"))
            elif net_income < ZERO:
                lines.append(LineSpec.debit_line(retained_earnings.id, -net_income, memo="Net loss"))
            entry = self._poster.post_closing_entry(
                tenant_id,
                fiscal_year.end_date,
                lines,
                description=f"Year-end close {fiscal_year.name}",
                reference=f"CLOSE-{fiscal_year.name}",
            )
            closing_entry_id = entry.id

        self._periods.mark_year_closed(fiscal_year, closing_entry_id)

        logger.info(
            "fiscal_year_closed",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "fiscal_year_name": fiscal_year.name,
                "net_income": net_income,
                "closing_entry_id": str(closing_entry_id) if closing_entry_id else None,
                "closed_account_count": max(len(lines) - (1 if net_income != ZERO else 0), 0),
            },
        )
        self._events.record(
            DomainEvent(
                event_type=YEAR_CLOSED,
                tenant_id=tenant_id,
                aggregate_id=fiscal_year.id,
                occurred_at=fiscal_year.closed_at,
                payload={
                    "name": fiscal_year.name,
                    "net_income": str(net_income),
                    "closing_entry_id": str(closing_entry_id) if closing_entry_id else None,
                },
            )
        )
        return FiscalYearInfo.from_model(fiscal_year)

    @staticmethod
    def _zeroing_line(account_id: UUID, balance: Decimal, normal_balance: str) -> LineSpec:
        """A line that brings ``balance`` (on the account's normal side) to zero."""
        net_debit = balance if normal_balance == "debit" else -balance
        if net_debit > ZERO:
            return LineSpec.credit_line(account_id, net_debit, memo="Year-end close")
        return LineSpec.debit_line(account_id, -net_debit, memo="Year-end close")

    def _resolve_retained_earnings(self, tenant_id: str, account_id: UUID | None) -> Account:
        if account_id is not None:
            account = self._registry.load_account(tenant_id, account_id)
        else:
            tagged = [
                a
                for a in self._session.execute(
                    select(Account).where(Account.tenant_id == tenant_id, Account.is_active.is_(True))
                ).scalars()
                if a.has_tag(self._retained_earnings_tag)
            ]
            if not tagged:
                raise ValidationError(
                    f"no account tagged {self._retained_earnings_tag!r}; pass retained_earnings_account_id",
                    field="retained_earnings_account_id",
                )
            if len(tagged) > 1:
                raise ValidationError(
                    f"several accounts tagged {self._retained_earnings_tag!r}: "
                    f"{', '.join(sorted(a.code for a in tagged))}",
                    field="retained_earnings_account_id",
                )
            account = tagged[0]

        if not account.is_postable:
            raise ValidationError(
                f"retained earnings account {account.code} must be active and postable",
                field="retained_earnings_account_id",
            )
        if account.category != AccountCategory.EQUITY:
            raise ValidationError(
                f"retained earnings account {account.code} must be an equity account",
                field="retained_earnings_account_id",
            )
        return account
