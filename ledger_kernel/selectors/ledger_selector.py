"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Aggregate and line-level queries over posted ledger lines:
    per-account debit/credit totals, account activity for statements, the
    global double-entry check, and draft counts for the period-close soft check.
Architecture position: Kernel > Selectors.  Read-only.

Invariants enforced:
    - Only POSTED entries contribute to totals and activity.
    - Every aggregate is rounded with round_money before leaving the selector.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import case, func, select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, LedgerLine, LineSide
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class AccountTotals:
    account_id: UUID
    debit_total: Decimal
    credit_total: Decimal

    @property
    def net_debit(self) -> Decimal:
        return self.debit_total - self.credit_total


@dataclass(frozen=True)
class ActivityRow:
    entry_id: UUID
    entry_number: str
    entry_date: date
    reference: str | None
    ledger_line_id: UUID
    side: LineSide
    amount: Decimal
    memo: str | None


def _debit_sum():
    return func.sum(
        case((LedgerLine.side == LineSide.DEBIT, LedgerLine.amount), else_=Decimal("0"))
    ).label("debit_total")


def _credit_sum():
    return func.sum(
        case((LedgerLine.side == LineSide.CREDIT, LedgerLine.amount), else_=Decimal("0"))
    ).label("credit_total")


class LedgerSelector(BaseSelector[LedgerLine]):
    """Read-only queries over posted ledger lines."""

    def account_totals(
        self,
        tenant_id: str,
        as_of_date: date | None = None,
        account_ids: Iterable[UUID] | None = None,
        from_date: date | None = None,
    ) -> dict[UUID, AccountTotals]:
        """
        Debit and credit totals per account from posted lines.

        Accounts without activity are absent from the result.
        """
        query = (
            select(LedgerLine.account_id, _debit_sum(), _credit_sum())
            .join(JournalEntry, LedgerLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.status == JournalEntryStatus.POSTED,
            )
            .group_by(LedgerLine.account_id)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)
        if from_date is not None:
            query = query.where(JournalEntry.entry_date >= from_date)
        if account_ids is not None:
            ids = list(account_ids)
            if not ids:
                return {}
            query = query.where(LedgerLine.account_id.in_(ids))

        return {
            row.account_id: AccountTotals(
                account_id=row.account_id,
                debit_total=round_money(row.debit_total or ZERO),
                credit_total=round_money(row.credit_total or ZERO),
            )
            for row in self.session.execute(query).all()
        }

    def activity(
        self,
        tenant_id: str,
        account_id: UUID,
        from_date: date,
        to_date: date,
    ) -> list[ActivityRow]:
        """Posted lines on one account in [from_date, to_date], in posting order."""
        query = (
            select(
                JournalEntry.id.label("entry_id"),
                JournalEntry.entry_number,
                JournalEntry.entry_date,
                JournalEntry.reference,
                LedgerLine.id.label("ledger_line_id"),
                LedgerLine.side,
                LedgerLine.amount,
                LedgerLine.memo,
            )
            .join(JournalEntry, LedgerLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.status == JournalEntryStatus.POSTED,
                LedgerLine.account_id == account_id,
                JournalEntry.entry_date >= from_date,
                JournalEntry.entry_date <= to_date,
            )
            .order_by(JournalEntry.entry_date, JournalEntry.seq, LedgerLine.line_seq)
        )
        return [
            ActivityRow(
                entry_id=row.entry_id,
                entry_number=row.entry_number,
                entry_date=row.entry_date,
                reference=row.reference,
                ledger_line_id=row.ledger_line_id,
                side=row.side,
                amount=round_money(row.amount),
                memo=row.memo,
            )
            for row in self.session.execute(query).all()
        ]

    def ledger_totals(self, tenant_id: str | None = None) -> tuple[Decimal, Decimal]:
        """
        (total debits, total credits) over every posted line.

        Without a tenant this spans all tenants; both figures must be equal
        after every committed operation.
        """
        query = select(_debit_sum(), _credit_sum()).join(
            JournalEntry, LedgerLine.journal_entry_id == JournalEntry.id
        ).where(JournalEntry.status == JournalEntryStatus.POSTED)
        if tenant_id is not None:
            query = query.where(JournalEntry.tenant_id == tenant_id)
        row = self.session.execute(query).one()
        return round_money(row.debit_total or ZERO), round_money(row.credit_total or ZERO)

    def draft_count(self, tenant_id: str, start_date: date, end_date: date) -> int:
        """Number of unposted draft entries dated inside [start_date, end_date]."""
        return self.session.execute(
            select(func.count(JournalEntry.id)).where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.status == JournalEntryStatus.DRAFT,
                JournalEntry.entry_date >= start_date,
                JournalEntry.entry_date <= end_date,
            )
        ).scalar_one()
