"""
Module: ledger_kernel.selectors.bank_selector
Responsibility: Read-only queries for bank matching and reconciliation:
    unreconciled bank transactions and GL lines, the items matched by a
    reconciliation, and the latest completed statement of a bank account.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Only POSTED ledger lines are offered for matching.
    - Amounts leave the selector rounded to the ledger scale.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.models.bank import BankTransaction, Reconciliation, ReconciliationStatus
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, LedgerLine, LineSide
from ledger_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class BankTransactionRow:
    id: UUID
    transaction_date: date
    amount: Decimal
    reference: str | None


@dataclass(frozen=True)
class GLLineRow:
    """A posted line on a bank's GL account, amount signed debit-positive."""

    id: UUID
    entry_id: UUID
    entry_number: str
    entry_seq: int
    line_seq: int
    entry_date: date
    signed_amount: Decimal
    reference: str | None


class BankSelector(BaseSelector[BankTransaction]):

    def unreconciled_transactions(
        self,
        bank_account_id: UUID,
        as_of_date: date | None = None,
    ) -> list[BankTransactionRow]:
        query = select(
            BankTransaction.id,
            BankTransaction.transaction_date,
            BankTransaction.amount,
            BankTransaction.reference,
        ).where(
            BankTransaction.bank_account_id == bank_account_id,
            BankTransaction.is_reconciled.is_(False),
        )
        if as_of_date is not None:
            query = query.where(BankTransaction.transaction_date <= as_of_date)
        query = query.order_by(BankTransaction.transaction_date, BankTransaction.created_at)
        return [
            BankTransactionRow(
                id=row.id,
                transaction_date=row.transaction_date,
                amount=round_money(row.amount),
                reference=row.reference,
            )
            for row in self.session.execute(query).all()
        ]

    def unreconciled_gl_lines(
        self,
        tenant_id: str,
        gl_account_id: UUID,
        as_of_date: date | None = None,
    ) -> list[GLLineRow]:
        query = (
            select(
                LedgerLine.id,
                LedgerLine.side,
                LedgerLine.amount,
                LedgerLine.line_seq,
                JournalEntry.id.label("entry_id"),
                JournalEntry.entry_number,
                JournalEntry.seq.label("entry_seq"),
                JournalEntry.entry_date,
                JournalEntry.reference,
            )
            .join(JournalEntry, LedgerLine.journal_entry_id == JournalEntry.id)
            .where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.status == JournalEntryStatus.POSTED,
                LedgerLine.account_id == gl_account_id,
                LedgerLine.is_reconciled.is_(False),
            )
            .order_by(JournalEntry.seq, LedgerLine.line_seq)
        )
        if as_of_date is not None:
            query = query.where(JournalEntry.entry_date <= as_of_date)
        rows = []
        for row in self.session.execute(query).all():
            amount = round_money(row.amount)
            rows.append(
                GLLineRow(
                    id=row.id,
                    entry_id=row.entry_id,
                    entry_number=row.entry_number,
                    entry_seq=row.entry_seq,
                    line_seq=row.line_seq,
                    entry_date=row.entry_date,
                    signed_amount=amount if row.side == LineSide.DEBIT else -amount,
                    reference=row.reference,
                )
            )
        return rows

    def matched_transactions(self, reconciliation_id: UUID) -> list[BankTransaction]:
        return list(
            self.session.execute(
                select(BankTransaction)
                .where(BankTransaction.reconciliation_id == reconciliation_id)
                .order_by(BankTransaction.transaction_date, BankTransaction.created_at)
            ).scalars()
        )

    def matched_total(self, reconciliation_id: UUID) -> Decimal:
        # Summed in Python: SQLite aggregates Numeric through floats
        amounts = self.session.execute(
            select(BankTransaction.amount).where(BankTransaction.reconciliation_id == reconciliation_id)
        ).scalars()
        return round_money(sum((round_money(a) for a in amounts), ZERO))

    def latest_completed(self, bank_account_id: UUID) -> Reconciliation | None:
        return self.session.execute(
            select(Reconciliation)
            .where(
                Reconciliation.bank_account_id == bank_account_id,
                Reconciliation.status == ReconciliationStatus.COMPLETED,
            )
            .order_by(Reconciliation.statement_date.desc(), Reconciliation.completed_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def active_reconciliation(self, bank_account_id: UUID) -> Reconciliation | None:
        return self.session.execute(
            select(Reconciliation)
            .where(
                Reconciliation.bank_account_id == bank_account_id,
                Reconciliation.status.in_(
                    [ReconciliationStatus.DRAFT, ReconciliationStatus.IN_PROGRESS]
                ),
            )
            .limit(1)
        ).scalar_one_or_none()
