"""
Bank reconciliation session tests.

Verifies:
- One active session per bank account
- Matches pair equal amounts between a bank transaction and a posted cash line
- A bulk apply is all-or-nothing; conflicts name every offending item
- Conflicts are re-checked when the match is written
- Completion requires opening + matched == statement balance
- Completed sessions are frozen; cancelled sessions release their matches
- The next session opens at the previous statement balance
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import update

from ledger_kernel.domain.dtos import BankTransactionSpec, MatchPair
from ledger_kernel.domain.events import RECONCILIATION_CANCELLED, RECONCILIATION_COMPLETED
from ledger_kernel.exceptions import (
    AlreadyReconciledError,
    ReconciliationBalanceMismatchError,
    ReconciliationInProgressError,
    ReconciliationNotFoundError,
    ReconciliationStateError,
)
from ledger_kernel.models.journal import LedgerLine
from ledger_services.reconciliation_session import ReconciliationSession
from tests.conftest import TENANT


def cash_line(entry, chart):
    return next(line.id for line in entry.lines if line.account_id == chart.cash)


def _cash_account(core):
    return next(a.id for a in core.get_accounts(TENANT).unwrap() if a.code == "1000")


def _all_cash_lines(core, deposits):
    ids = {pair.ledger_line_id for pair in deposits}
    statement = core.account_statement(TENANT, _cash_account(core), date(2024, 1, 1), date(2024, 12, 31)).unwrap()
    entries = [core.get_entry(TENANT, line.entry_id).unwrap() for line in statement.lines]
    return [line for entry in entries for line in entry.lines if line.id in ids]


@pytest.fixture
def deposits(core, chart, bank_account, post_entry):
    """Two deposits booked in the ledger and on the statement: 9,500 and 500."""
    pairs = []
    for day, amount, reference in ((5, "9500.00", "DEP-1"), (8, "500.00", "DEP-2")):
        entry = post_entry(chart.cash, chart.revenue, amount, date(2024, 3, day), reference=reference)
        transaction = core.record_bank_transaction(
            TENANT,
            bank_account,
            BankTransactionSpec(transaction_date=date(2024, 3, day), amount=Decimal(amount), reference=reference),
        ).unwrap()
        pairs.append(MatchPair(bank_transaction_id=transaction.id, ledger_line_id=cash_line(entry, chart)))
    return pairs


@pytest.fixture
def session_id(core, bank_account):
    return core.start_reconciliation(TENANT, bank_account, "10000.00", date(2024, 3, 31)).unwrap().id


class TestStart:
    def test_start_is_in_progress(self, core, bank_account):
        info = core.start_reconciliation(TENANT, bank_account, "10000.00", date(2024, 3, 31)).unwrap()

        assert info.status == "in_progress"
        assert info.opening_balance == Decimal("0.00")
        assert info.statement_balance == Decimal("10000.00")

    def test_second_active_session_rejected(self, core, bank_account, session_id):
        result = core.start_reconciliation(TENANT, bank_account, "1.00", date(2024, 4, 30))

        assert isinstance(result.error, ReconciliationInProgressError)
        assert result.error.reconciliation_id == str(session_id)

    def test_opening_balance_from_bank_account(self, core, chart):
        bank_id = core.create_bank_account(TENANT, "BANK-2", "Savings", chart.cash, opening_balance="75.00").unwrap().id

        info = core.start_reconciliation(TENANT, bank_id, "75.00", date(2024, 3, 31)).unwrap()

        assert info.opening_balance == Decimal("75.00")

    def test_unknown_session(self, core, bank_account):
        assert isinstance(core.reconciliation_summary(TENANT, uuid4()).error, ReconciliationNotFoundError)


class TestApplyMatches:
    def test_apply_all(self, core, session_id, deposits):
        summary = core.apply_matches(TENANT, session_id, deposits).unwrap()

        assert summary.matched_count == 2
        assert summary.matched_total == Decimal("10000.00")
        assert summary.difference == Decimal("0.00")
        assert summary.is_balanced
        assert summary.outstanding_bank_transactions == ()
        assert summary.outstanding_ledger_line_ids == ()

    def test_conflict_applies_nothing(self, core, session_id, deposits):
        core.apply_match(TENANT, session_id, deposits[0].bank_transaction_id, deposits[0].ledger_line_id).unwrap()

        result = core.apply_matches(TENANT, session_id, deposits)

        assert isinstance(result.error, AlreadyReconciledError)
        assert result.error.bank_transaction_ids == [str(deposits[0].bank_transaction_id)]
        assert result.error.ledger_line_ids == [str(deposits[0].ledger_line_id)]
        summary = core.reconciliation_summary(TENANT, session_id).unwrap()
        assert summary.matched_count == 1

    def test_conflict_at_write_time_applies_nothing(self, core, session_id, deposits, monkeypatch, captured_logs):
        contested = deposits[1].ledger_line_id
        load_lines = ReconciliationSession._load_lines

        def load_then_lose_race(self, reconciliation, ids):
            found = load_lines(self, reconciliation, ids)
            # another transaction reconciles the line after it was read
            self._session.execute(
                update(LedgerLine)
                .where(LedgerLine.id == contested)
                .values(is_reconciled=True)
                .execution_options(synchronize_session=False)
            )
            return found

        monkeypatch.setattr(ReconciliationSession, "_load_lines", load_then_lose_race)
        result = core.apply_matches(TENANT, session_id, deposits)
        monkeypatch.undo()

        assert isinstance(result.error, AlreadyReconciledError)
        assert result.error.bank_transaction_ids == []
        assert result.error.ledger_line_ids == [str(contested)]
        assert any(r["message"] == "reconciliation_match_conflict" for r in captured_logs())

        summary = core.reconciliation_summary(TENANT, session_id).unwrap()
        assert summary.matched_count == 0
        assert len(summary.outstanding_bank_transactions) == 2
        assert set(summary.outstanding_ledger_line_ids) == {pair.ledger_line_id for pair in deposits}

    def test_amount_mismatch_rejected(self, core, session_id, deposits):
        crossed = MatchPair(
            bank_transaction_id=deposits[0].bank_transaction_id, ledger_line_id=deposits[1].ledger_line_id
        )

        result = core.apply_matches(TENANT, session_id, [crossed])

        assert result.error_code == "VALIDATION_ERROR"

    def test_duplicate_pair_rejected(self, core, session_id, deposits):
        assert core.apply_matches(TENANT, session_id, [deposits[0], deposits[0]]).error_code == "VALIDATION_ERROR"

    def test_empty_pairs_rejected(self, core, session_id):
        assert core.apply_matches(TENANT, session_id, []).error_code == "VALIDATION_ERROR"

    def test_line_on_other_account_rejected(self, core, chart, session_id, deposits, post_entry):
        entry = post_entry(chart.receivables, chart.revenue, "9500.00", date(2024, 3, 5))
        receivable_line = next(line.id for line in entry.lines if line.account_id == chart.receivables)

        result = core.apply_matches(
            TENANT,
            session_id,
            [MatchPair(bank_transaction_id=deposits[0].bank_transaction_id, ledger_line_id=receivable_line)],
        )

        assert result.error_code == "VALIDATION_ERROR"

    def test_matched_line_is_marked(self, core, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits[:1]).unwrap()

        reconciled = [line.id for line in _all_cash_lines(core, deposits) if line.is_reconciled]

        assert reconciled == [deposits[0].ledger_line_id]

    def test_reconciled_transaction_cannot_be_deleted(self, core, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits[:1]).unwrap()

        result = core.delete_bank_transaction(TENANT, deposits[0].bank_transaction_id)

        assert isinstance(result.error, AlreadyReconciledError)


class TestUnmatch:
    def test_unmatch_releases_both_sides(self, core, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits).unwrap()

        summary = core.unmatch(TENANT, session_id, [deposits[1].bank_transaction_id]).unwrap()

        assert summary.matched_count == 1
        assert [t.id for t in summary.outstanding_bank_transactions] == [deposits[1].bank_transaction_id]
        assert summary.outstanding_ledger_line_ids == (deposits[1].ledger_line_id,)

    def test_unmatch_foreign_transaction_rejected(self, core, session_id, deposits):
        assert core.unmatch(TENANT, session_id, [deposits[0].bank_transaction_id]).error_code == "VALIDATION_ERROR"


class TestComplete:
    def test_mismatch_keeps_session_open(self, core, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits[:1]).unwrap()

        result = core.complete_reconciliation(TENANT, session_id)

        assert isinstance(result.error, ReconciliationBalanceMismatchError)
        assert Decimal(result.error.book_balance) == Decimal("9500.00")
        assert Decimal(result.error.statement_balance) == Decimal("10000.00")
        summary = core.reconciliation_summary(TENANT, session_id).unwrap()
        assert summary.reconciliation.status == "in_progress"
        assert summary.difference == Decimal("500.00")

    def test_complete(self, core, session_id, deposits, publisher):
        core.apply_matches(TENANT, session_id, deposits).unwrap()

        info = core.complete_reconciliation(TENANT, session_id).unwrap()

        assert info.status == "completed"
        assert info.reconciled_balance == Decimal("10000.00")
        assert info.completed_at is not None
        assert [e.aggregate_id for e in publisher.of_type(RECONCILIATION_COMPLETED)] == [session_id]

    def test_completed_session_is_frozen(self, core, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits).unwrap()
        core.complete_reconciliation(TENANT, session_id).unwrap()

        unmatched = core.unmatch(TENANT, session_id, [deposits[0].bank_transaction_id])
        cancelled = core.cancel_reconciliation(TENANT, session_id)

        assert isinstance(unmatched.error, ReconciliationStateError)
        assert isinstance(cancelled.error, ReconciliationStateError)
        assert cancelled.error.status == "completed"

    def test_next_session_opens_at_previous_statement_balance(self, core, bank_account, session_id, deposits):
        core.apply_matches(TENANT, session_id, deposits).unwrap()
        core.complete_reconciliation(TENANT, session_id).unwrap()

        following = core.start_reconciliation(TENANT, bank_account, "10000.00", date(2024, 4, 30)).unwrap()

        assert following.opening_balance == Decimal("10000.00")
        assert core.complete_reconciliation(TENANT, following.id).is_success


class TestCancel:
    def test_cancel_releases_matches(self, core, bank_account, session_id, deposits, publisher):
        core.apply_matches(TENANT, session_id, deposits).unwrap()

        info = core.cancel_reconciliation(TENANT, session_id).unwrap()

        assert info.status == "cancelled"
        assert len(publisher.of_type(RECONCILIATION_CANCELLED)) == 1
        restarted = core.start_reconciliation(TENANT, bank_account, "10000.00", date(2024, 3, 31)).unwrap()
        assert restarted.opening_balance == Decimal("0.00")
        assert core.apply_matches(TENANT, restarted.id, deposits).is_success

    def test_cancelled_session_rejects_matches(self, core, session_id, deposits):
        core.cancel_reconciliation(TENANT, session_id).unwrap()

        assert isinstance(core.apply_matches(TENANT, session_id, deposits).error, ReconciliationStateError)


class TestSummary:
    def test_outstanding_limited_to_statement_date(self, core, chart, bank_account, session_id, deposits, post_entry):
        post_entry(chart.cash, chart.revenue, "20.00", date(2024, 4, 2))
        core.record_bank_transaction(
            TENANT, bank_account, BankTransactionSpec(transaction_date=date(2024, 4, 2), amount=Decimal("20.00"))
        ).unwrap()

        summary = core.reconciliation_summary(TENANT, session_id).unwrap()

        assert {t.id for t in summary.outstanding_bank_transactions} == {p.bank_transaction_id for p in deposits}
        assert set(summary.outstanding_ledger_line_ids) == {p.ledger_line_id for p in deposits}
        assert summary.reconciled_balance == Decimal("0.00")
