"""
ledger_services.reconciliation_session
======================================

Responsibility:
    Runs the lifecycle of a bank reconciliation: start against a statement
    balance, apply or remove (bank transaction, ledger line) matches,
    complete when the books agree with the statement, or cancel and release
    every match.

Architecture:
    Services layer.  Runs inside the caller's session and never commits;
    LedgerCore decides the transaction boundary (one transaction for a bulk
    apply, one per pair for ``apply_match``).

State machine::

    draft -> in_progress -> completed
    draft / in_progress  -> cancelled

    completed and cancelled are terminal and frozen (db/immutability.py).

Invariants enforced:
    - At most one draft/in-progress reconciliation per bank account; the
      bank account row is locked while checking.
    - A bank transaction and a ledger line are each reconciled at most
      once.  The unreconciled state is re-checked at write time with
      conditional updates (``WHERE is_reconciled = false``); a lost race
      raises AlreadyReconciledError and the caller's transaction rolls back.
    - Matched pairs carry equal signed amounts and belong to this bank
      account and its GL account.
    - complete requires opening + sum(matched bank amounts) to equal the
      statement balance exactly.

Failure modes:
    - ReconciliationNotFoundError, ReconciliationStateError,
      ReconciliationInProgressError, AlreadyReconciledError,
      ReconciliationBalanceMismatchError, ValidationError.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_kernel.db.types import parse_amount, round_money
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import (
    BankTransactionInfo,
    MatchPair,
    ReconciliationInfo,
    ReconciliationSummary,
)
from ledger_kernel.domain.events import (
    RECONCILIATION_CANCELLED,
    RECONCILIATION_COMPLETED,
    DomainEvent,
    EventBuffer,
)
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import (
    AlreadyReconciledError,
    BankAccountNotFoundError,
    ReconciliationBalanceMismatchError,
    ReconciliationInProgressError,
    ReconciliationNotFoundError,
    ReconciliationStateError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.bank import BankAccount, BankTransaction, Reconciliation, ReconciliationStatus
from ledger_kernel.models.journal import JournalEntry, JournalEntryStatus, LedgerLine
from ledger_kernel.selectors.bank_selector import BankSelector

logger = get_logger("services.reconciliation_session")


class ReconciliationSession:
    """
    Reconciliation lifecycle service.

    Contract:
        Never calls ``session.commit()``; every failure leaves the session
        for the caller to roll back.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        events: EventBuffer | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._events = events if events is not None else EventBuffer()
        self._selector = BankSelector(session)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        statement_balance: Decimal | int | str,
        statement_date: date,
    ) -> ReconciliationInfo:
        """Open a session; it moves from draft to in_progress immediately."""
        require_tenant(tenant_id)
        balance = parse_amount(statement_balance, field="statement_balance")
        if not isinstance(statement_date, date):
            raise ValidationError("statement_date must be a date", field="statement_date")

        bank_account = self._session.execute(
            select(BankAccount)
            .where(BankAccount.id == bank_account_id, BankAccount.tenant_id == tenant_id)
            .with_for_update()
        ).scalar_one_or_none()
        if bank_account is None:
            raise BankAccountNotFoundError(str(bank_account_id))
        if not bank_account.is_active:
            raise ValidationError(f"bank account {bank_account.code} is inactive", field="bank_account_id")

        active = self._selector.active_reconciliation(bank_account.id)
        if active is not None:
            raise ReconciliationInProgressError(str(bank_account.id), str(active.id))

        previous = self._selector.latest_completed(bank_account.id)
        opening = previous.statement_balance if previous is not None else bank_account.opening_balance

        reconciliation = Reconciliation(
            tenant_id=tenant_id,
            bank_account_id=bank_account.id,
            statement_date=statement_date,
            statement_balance=balance,
            opening_balance=round_money(opening),
            status=ReconciliationStatus.DRAFT,
        )
        self._session.add(reconciliation)
        self._session.flush()
        reconciliation.status = ReconciliationStatus.IN_PROGRESS
        self._session.flush()

        with LogContext.bind(reconciliation_id=reconciliation.id):
            logger.info(
                "reconciliation_started",
                extra={
                    "bank_account_id": str(bank_account.id),
                    "statement_date": statement_date,
                    "statement_balance": balance,
                    "opening_balance": round_money(opening),
                },
            )
        return ReconciliationInfo.from_model(reconciliation)

    def get(self, tenant_id: str, reconciliation_id: UUID) -> ReconciliationInfo:
        return ReconciliationInfo.from_model(self._load(tenant_id, reconciliation_id))

    def apply_matches(
        self,
        tenant_id: str,
        reconciliation_id: UUID,
        pairs: Sequence[MatchPair],
    ) -> ReconciliationSummary:
        """
        Reconcile every pair or none of them.

        Raises AlreadyReconciledError naming every conflicting item when
        any bank transaction or ledger line was already reconciled.
        """
        reconciliation = self._load(tenant_id, reconciliation_id, for_update=True)
        self._require_status(reconciliation, "apply_matches", ReconciliationStatus.IN_PROGRESS)

        pairs = list(pairs or ())
        if not pairs:
            raise ValidationError("at least one match pair is required", field="pairs")
        bank_ids = [p.bank_transaction_id for p in pairs]
        line_ids = [p.ledger_line_id for p in pairs]
        if len(set(bank_ids)) != len(bank_ids) or len(set(line_ids)) != len(line_ids):
            raise ValidationError("a transaction or ledger line appears in more than one pair", field="pairs")

        transactions = self._load_transactions(reconciliation, bank_ids)
        lines = self._load_lines(reconciliation, line_ids)

        for pair in pairs:
            transaction = transactions[pair.bank_transaction_id]
            line = lines[pair.ledger_line_id]
            if round_money(transaction.amount) != round_money(line.signed_amount):
                raise ValidationError(
                    f"amount mismatch: bank {round_money(transaction.amount)} vs ledger "
                    f"{round_money(line.signed_amount)}",
                    field="pairs",
                )

        conflicting_bank = [str(t.id) for t in transactions.values() if t.is_reconciled]
        conflicting_lines = [str(ln.id) for ln in lines.values() if ln.is_reconciled]
        if conflicting_bank or conflicting_lines:
            raise AlreadyReconciledError(conflicting_bank, conflicting_lines)

        for pair in pairs:
            bank_rows = self._session.execute(
                update(BankTransaction)
                .where(
                    BankTransaction.id == pair.bank_transaction_id,
                    BankTransaction.is_reconciled.is_(False),
                )
                .values(
                    is_reconciled=True,
                    reconciliation_id=reconciliation.id,
                    matched_ledger_line_id=pair.ledger_line_id,
                )
                .execution_options(synchronize_session=False)
            ).rowcount
            line_rows = self._session.execute(
                update(LedgerLine)
                .where(
                    LedgerLine.id == pair.ledger_line_id,
                    LedgerLine.is_reconciled.is_(False),
                )
                .values(is_reconciled=True, reconciliation_id=reconciliation.id)
                .execution_options(synchronize_session=False)
            ).rowcount
            if bank_rows != 1 or line_rows != 1:
                logger.warning(
                    "reconciliation_match_conflict",
                    extra={
                        "reconciliation_id": str(reconciliation.id),
                        "bank_transaction_id": str(pair.bank_transaction_id),
                        "ledger_line_id": str(pair.ledger_line_id),
                    },
                )
                raise AlreadyReconciledError(
                    [str(pair.bank_transaction_id)] if bank_rows != 1 else [],
                    [str(pair.ledger_line_id)] if line_rows != 1 else [],
                )

        self._expire_match_state()

        logger.info(
            "reconciliation_matches_applied",
            extra={"reconciliation_id": str(reconciliation.id), "pair_count": len(pairs)},
        )
        return self.summary(tenant_id, reconciliation.id)

    def unmatch(
        self,
        tenant_id: str,
        reconciliation_id: UUID,
        transaction_ids: Sequence[UUID],
    ) -> ReconciliationSummary:
        """Release matched bank transactions (and their ledger lines)."""
        reconciliation = self._load(tenant_id, reconciliation_id, for_update=True)
        self._require_status(reconciliation, "unmatch", ReconciliationStatus.IN_PROGRESS)

        transaction_ids = list(transaction_ids or ())
        if not transaction_ids:
            raise ValidationError("at least one transaction id is required", field="transaction_ids")
        transactions = self._load_transactions(reconciliation, transaction_ids)
        foreign = [str(t.id) for t in transactions.values() if t.reconciliation_id != reconciliation.id]
        if foreign:
            raise ValidationError(
                f"transactions not matched in this reconciliation: {', '.join(foreign)}",
                field="transaction_ids",
            )

        line_ids = [t.matched_ledger_line_id for t in transactions.values() if t.matched_ledger_line_id]
        self._release(reconciliation.id, bank_ids=transaction_ids, line_ids=line_ids)

        logger.info(
            "reconciliation_matches_released",
            extra={"reconciliation_id": str(reconciliation.id), "transaction_count": len(transaction_ids)},
        )
        return self.summary(tenant_id, reconciliation.id)

    def complete(self, tenant_id: str, reconciliation_id: UUID) -> ReconciliationInfo:
        """
        Complete when opening + matched bank amounts == statement balance.

        On mismatch the session is left in_progress.
        """
        reconciliation = self._load(tenant_id, reconciliation_id, for_update=True)
        self._require_status(reconciliation, "complete", ReconciliationStatus.IN_PROGRESS)

        reconciled = round_money(reconciliation.opening_balance) + self._selector.matched_total(reconciliation.id)
        statement = round_money(reconciliation.statement_balance)
        if reconciled != statement:
            logger.warning(
                "reconciliation_balance_mismatch",
                extra={
                    "reconciliation_id": str(reconciliation.id),
                    "reconciled_balance": reconciled,
                    "statement_balance": statement,
                    "difference": statement - reconciled,
                },
            )
            raise ReconciliationBalanceMismatchError(str(reconciliation.id), str(reconciled), str(statement))

        reconciliation.status = ReconciliationStatus.COMPLETED
        reconciliation.reconciled_balance = reconciled
        reconciliation.completed_at = self._clock.now()
        self._session.flush()

        logger.info(
            "reconciliation_completed",
            extra={"reconciliation_id": str(reconciliation.id), "reconciled_balance": reconciled},
        )
        self._events.record(
            DomainEvent(
                event_type=RECONCILIATION_COMPLETED,
                tenant_id=tenant_id,
                aggregate_id=reconciliation.id,
                occurred_at=reconciliation.completed_at,
                payload={
                    "bank_account_id": str(reconciliation.bank_account_id),
                    "statement_balance": str(statement),
                },
            )
        )
        return ReconciliationInfo.from_model(reconciliation)

    def cancel(self, tenant_id: str, reconciliation_id: UUID) -> ReconciliationInfo:
        """Release every match and move to cancelled."""
        reconciliation = self._load(tenant_id, reconciliation_id, for_update=True)
        self._require_status(
            reconciliation, "cancel", ReconciliationStatus.DRAFT, ReconciliationStatus.IN_PROGRESS
        )

        released = self._release(reconciliation.id)
        reconciliation.status = ReconciliationStatus.CANCELLED
        reconciliation.cancelled_at = self._clock.now()
        self._session.flush()

        logger.info(
            "reconciliation_cancelled",
            extra={"reconciliation_id": str(reconciliation.id), "released_count": released},
        )
        self._events.record(
            DomainEvent(
                event_type=RECONCILIATION_CANCELLED,
                tenant_id=tenant_id,
                aggregate_id=reconciliation.id,
                occurred_at=reconciliation.cancelled_at,
                payload={"bank_account_id": str(reconciliation.bank_account_id)},
            )
        )
        return ReconciliationInfo.from_model(reconciliation)

    def summary(self, tenant_id: str, reconciliation_id: UUID) -> ReconciliationSummary:
        reconciliation = self._load(tenant_id, reconciliation_id)
        bank_account = reconciliation.bank_account

        matched = self._selector.matched_transactions(reconciliation.id)
        matched_total = round_money(sum((round_money(t.amount) for t in matched), Decimal("0")))
        reconciled = round_money(reconciliation.opening_balance) + matched_total

        outstanding_bank = tuple(
            BankTransactionInfo(
                id=row.id,
                bank_account_id=bank_account.id,
                transaction_date=row.transaction_date,
                amount=row.amount,
                is_reconciled=False,
                reference=row.reference,
            )
            for row in self._selector.unreconciled_transactions(bank_account.id, reconciliation.statement_date)
        )
        outstanding_lines = tuple(
            row.id
            for row in self._selector.unreconciled_gl_lines(
                tenant_id, bank_account.gl_account_id, reconciliation.statement_date
            )
        )

        return ReconciliationSummary(
            reconciliation=ReconciliationInfo.from_model(reconciliation),
            matched_count=len(matched),
            matched_total=matched_total,
            reconciled_balance=reconciled,
            difference=round_money(reconciliation.statement_balance) - reconciled,
            matched_transactions=tuple(BankTransactionInfo.from_model(t) for t in matched),
            outstanding_bank_transactions=outstanding_bank,
            outstanding_ledger_line_ids=outstanding_lines,
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load(self, tenant_id: str, reconciliation_id: UUID, for_update: bool = False) -> Reconciliation:
        require_tenant(tenant_id)
        query = select(Reconciliation).where(
            Reconciliation.id == reconciliation_id,
            Reconciliation.tenant_id == tenant_id,
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        reconciliation = self._session.execute(query).scalar_one_or_none()
        if reconciliation is None:
            raise ReconciliationNotFoundError(str(reconciliation_id))
        return reconciliation

    @staticmethod
    def _require_status(reconciliation: Reconciliation, operation: str, *allowed: ReconciliationStatus) -> None:
        if reconciliation.status not in allowed:
            raise ReconciliationStateError(str(reconciliation.id), reconciliation.status.value, operation)

    def _load_transactions(self, reconciliation: Reconciliation, ids: Sequence[UUID]) -> dict[UUID, BankTransaction]:
        found = {
            t.id: t
            for t in self._session.execute(
                select(BankTransaction)
                .where(
                    BankTransaction.id.in_(ids),
                    BankTransaction.tenant_id == reconciliation.tenant_id,
                    BankTransaction.bank_account_id == reconciliation.bank_account_id,
                )
                .execution_options(populate_existing=True)
            ).scalars()
        }
        missing = [str(i) for i in ids if i not in found]
        if missing:
            raise ValidationError(
                f"bank transactions not on this bank account: {', '.join(missing)}",
                field="bank_transaction_id",
            )
        return found

    def _load_lines(self, reconciliation: Reconciliation, ids: Sequence[UUID]) -> dict[UUID, LedgerLine]:
        gl_account_id = reconciliation.bank_account.gl_account_id
        found = {
            line.id: line
            for line in self._session.execute(
                select(LedgerLine)
                .join(JournalEntry, LedgerLine.journal_entry_id == JournalEntry.id)
                .where(
                    LedgerLine.id.in_(ids),
                    LedgerLine.tenant_id == reconciliation.tenant_id,
                    LedgerLine.account_id == gl_account_id,
                    JournalEntry.status == JournalEntryStatus.POSTED,
                )
                .execution_options(populate_existing=True)
            ).scalars()
        }
        missing = [str(i) for i in ids if i not in found]
        if missing:
            raise ValidationError(
                f"ledger lines not posted to the bank's GL account: {', '.join(missing)}",
                field="ledger_line_id",
            )
        return found

    def _release(
        self,
        reconciliation_id: UUID,
        bank_ids: Sequence[UUID] | None = None,
        line_ids: Sequence[UUID] | None = None,
    ) -> int:
        """Clear match links held by this reconciliation; returns released transaction count."""
        bank_update = update(BankTransaction).where(BankTransaction.reconciliation_id == reconciliation_id)
        line_update = update(LedgerLine).where(LedgerLine.reconciliation_id == reconciliation_id)
        if bank_ids is not None:
            bank_update = bank_update.where(BankTransaction.id.in_(list(bank_ids)))
        if line_ids is not None:
            line_update = line_update.where(LedgerLine.id.in_(list(line_ids)))

        released = self._session.execute(
            bank_update.values(is_reconciled=False, reconciliation_id=None, matched_ledger_line_id=None)
            .execution_options(synchronize_session=False)
        ).rowcount
        self._session.execute(
            line_update.values(is_reconciled=False, reconciliation_id=None)
            .execution_options(synchronize_session=False)
        )
        self._expire_match_state()
        return released

    def _expire_match_state(self) -> None:
        """Conditional updates bypass the identity map; reload match flags on next access."""
        for instance in list(self._session.identity_map.values()):
            if isinstance(instance, BankTransaction):
                self._session.expire(instance, ["is_reconciled", "reconciliation_id", "matched_ledger_line_id"])
            elif isinstance(instance, LedgerLine):
                self._session.expire(instance, ["is_reconciled", "reconciliation_id"])
