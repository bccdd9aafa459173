"""
Module: ledger_kernel.selectors.trial_balance
Responsibility: TrialBalanceCalculator -- per-account debit/credit totals and
    normal-balance-signed net balances as of a date, grand totals, and the
    running-balance account statement.
Architecture position: Kernel > Selectors.  Read-only; built on LedgerSelector.

Invariants enforced:
    - Grand totals cover every account of the tenant, independent of the
      include_zero filter, so total_debits == total_credits for any valid
      ledger state.
    - Opening balances are reported per row and folded into the net balance,
      never into the posting totals.

Audit relevance:
    The trial balance is the regression check for LedgerPoster; it is
    derived from ledger lines and never from Account.current_balance.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.dtos import (
    AccountStatement,
    StatementLine,
    TrialBalance,
    TrialBalanceRow,
)
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import UnknownAccountError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, NormalBalance
from ledger_kernel.models.journal import LedgerLine, LineSide
from ledger_kernel.selectors.base import BaseSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector

logger = get_logger("selectors.trial_balance")


def signed_balance(normal_balance: NormalBalance, debit_total: Decimal, credit_total: Decimal) -> Decimal:
    """Net of debits and credits expressed on the account's normal side."""
    if normal_balance == NormalBalance.DEBIT:
        return debit_total - credit_total
    return credit_total - debit_total


def opening_applies(account: Account, as_of_date: date) -> bool:
    return account.opening_balance_date is None or account.opening_balance_date <= as_of_date


class TrialBalanceCalculator(BaseSelector[LedgerLine]):
    """Aggregates postings into per-account and global totals."""

    def __init__(self, session):
        super().__init__(session)
        self._ledger = LedgerSelector(session)

    def trial_balance(
        self,
        tenant_id: str,
        as_of_date: date,
        include_zero: bool = False,
    ) -> TrialBalance:
        """
        Trial balance for a tenant as of ``as_of_date`` (inclusive).

        Header accounts are omitted; they never carry postings.  With
        ``include_zero=False`` rows whose totals and balance are all zero
        are dropped from ``rows`` (not from the grand totals).
        """
        require_tenant(tenant_id)
        accounts = self.session.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.is_header.is_(False))
            .order_by(Account.code)
        ).scalars().all()
        totals = self._ledger.account_totals(tenant_id, as_of_date=as_of_date)

        rows: list[TrialBalanceRow] = []
        total_debits = ZERO
        total_credits = ZERO
        for account in accounts:
            account_totals = totals.get(account.id)
            debit_total = account_totals.debit_total if account_totals else ZERO
            credit_total = account_totals.credit_total if account_totals else ZERO
            opening = round_money(account.opening_balance) if opening_applies(account, as_of_date) else ZERO
            balance = opening + signed_balance(account.normal_balance, debit_total, credit_total)

            total_debits += debit_total
            total_credits += credit_total

            if not include_zero and debit_total == ZERO and credit_total == ZERO and balance == ZERO:
                continue
            rows.append(
                TrialBalanceRow(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    category=account.category.value,
                    normal_balance=account.normal_balance.value,
                    opening_balance=opening,
                    debit_total=debit_total,
                    credit_total=credit_total,
                    balance=balance,
                )
            )

        result = TrialBalance(
            tenant_id=tenant_id,
            as_of_date=as_of_date,
            rows=tuple(rows),
            total_debits=total_debits,
            total_credits=total_credits,
        )
        if not result.is_balanced:
            # Posting validation makes this unreachable; surface it loudly if not.
            logger.critical(
                "trial_balance_out_of_balance",
                extra={
                    "as_of_date": as_of_date,
                    "total_debits": total_debits,
                    "total_credits": total_credits,
                },
            )
        logger.debug(
            "trial_balance_computed",
            extra={"as_of_date": as_of_date, "row_count": len(rows)},
        )
        return result

    def account_statement(
        self,
        tenant_id: str,
        account_id: UUID,
        from_date: date,
        to_date: date,
    ) -> AccountStatement:
        """Activity on one postable account with a running balance."""
        require_tenant(tenant_id)
        if from_date > to_date:
            raise ValidationError("from_date must not be after to_date", field="from_date")
        account = self.session.execute(
            select(Account).where(Account.id == account_id, Account.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if account is None:
            raise UnknownAccountError(str(account_id), tenant_id)

        day_before = from_date - timedelta(days=1)
        prior = self._ledger.account_totals(
            tenant_id, as_of_date=day_before, account_ids=[account.id]
        ).get(account.id)
        opening = round_money(account.opening_balance) if opening_applies(account, day_before) else ZERO
        if prior is not None:
            opening += signed_balance(account.normal_balance, prior.debit_total, prior.credit_total)

        running = opening
        lines: list[StatementLine] = []
        for row in self._ledger.activity(tenant_id, account.id, from_date, to_date):
            debit = row.amount if row.side == LineSide.DEBIT else ZERO
            credit = row.amount if row.side == LineSide.CREDIT else ZERO
            running += signed_balance(account.normal_balance, debit, credit)
            lines.append(
                StatementLine(
                    entry_id=row.entry_id,
                    entry_number=row.entry_number,
                    entry_date=row.entry_date,
                    ledger_line_id=row.ledger_line_id,
                    debit_amount=debit,
                    credit_amount=credit,
                    running_balance=running,
                    reference=row.reference,
                    memo=row.memo,
                )
            )

        return AccountStatement(
            account_id=account.id,
            account_code=account.code,
            from_date=from_date,
            to_date=to_date,
            opening_balance=opening,
            lines=tuple(lines),
            closing_balance=running,
        )

    def ledger_totals(self) -> tuple[Decimal, Decimal]:
        """Global (all tenants) debit and credit totals."""
        return self._ledger.ledger_totals()
