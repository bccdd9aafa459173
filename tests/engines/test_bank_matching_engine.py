"""
Bank matching engine tests (pure, no database).

Verifies:
- Candidates need an equal amount and a date within the window
- Ranking prefers exact references, then date proximity, then posting order
- Assignment is one-to-one and reports alternatives and contested items
- Identical inputs give identical outputs
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_engines.matching import BankItem, BankMatchingEngine, LedgerItem, MatchTier
from ledger_engines.tracer import compute_input_fingerprint


def _uuid(n: int) -> UUID:
    return UUID(int=n)


def bank(n, day, amount, reference=None):
    return BankItem(id=_uuid(n), transaction_date=date(2024, 3, day), amount=Decimal(amount), reference=reference)


def line(n, day, amount, seq=None, reference=None):
    return LedgerItem(
        id=_uuid(1000 + n),
        entry_date=date(2024, 3, day),
        amount=Decimal(amount),
        entry_seq=seq if seq is not None else n,
        line_seq=0,
        entry_number=f"JE-{n:06d}",
        reference=reference,
    )


@pytest.fixture
def engine():
    return BankMatchingEngine()


class TestCandidates:
    def test_window_excludes_distant_line(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "1500.00")],
            ledger_items=[line(1, 6, "1500.00"), line(2, 10, "1500.00")],
            window_days=3,
        )

        assert len(result.proposals) == 1
        proposal = result.proposals[0]
        assert proposal.ledger_line_id == _uuid(1001)
        assert proposal.date_delta_days == 1
        assert proposal.alternative_ledger_line_ids == ()
        assert result.unmatched_ledger_line_ids == (_uuid(1002),)

    def test_window_is_inclusive(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "10.00")], ledger_items=[line(1, 8, "10.00")], window_days=3
        )

        assert len(result.proposals) == 1

    def test_amount_must_match_exactly(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "10.00")], ledger_items=[line(1, 5, "10.01")], window_days=3
        )

        assert result.proposals == ()
        assert result.unmatched_bank_transaction_ids == (_uuid(1),)
        assert result.contested == ()

    def test_sign_must_match(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "-10.00")], ledger_items=[line(1, 5, "10.00")], window_days=3
        )

        assert result.proposals == ()

    def test_zero_window_needs_same_day(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "10.00"), bank(2, 6, "20.00")],
            ledger_items=[line(1, 5, "10.00"), line(2, 7, "20.00")],
            window_days=0,
        )

        assert [p.bank_transaction_id for p in result.proposals] == [_uuid(1)]

    def test_negative_window_rejected(self, engine):
        with pytest.raises(ValueError):
            engine.suggest(bank_items=[], ledger_items=[], window_days=-1)


class TestRanking:
    def test_exact_reference_beats_closer_date(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "75.00", reference=" chk-1042 ")],
            ledger_items=[line(1, 5, "75.00"), line(2, 7, "75.00", reference="CHK-1042")],
            window_days=3,
        )

        proposal = result.proposals[0]
        assert proposal.ledger_line_id == _uuid(1002)
        assert proposal.tier == MatchTier.EXACT_REFERENCE
        assert proposal.alternative_ledger_line_ids == (_uuid(1001),)
        assert proposal.is_ambiguous

    def test_closer_date_wins(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "75.00")],
            ledger_items=[line(1, 2, "75.00"), line(2, 6, "75.00")],
            window_days=3,
        )

        assert result.proposals[0].ledger_line_id == _uuid(1002)
        assert result.proposals[0].tier == MatchTier.AMOUNT_DATE_ONLY

    def test_equal_distance_prefers_earlier_posting(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "75.00")],
            ledger_items=[line(1, 6, "75.00", seq=9), line(2, 4, "75.00", seq=3)],
            window_days=3,
        )

        assert result.proposals[0].ledger_line_id == _uuid(1002)

    def test_blank_references_are_not_exact(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "75.00", reference="  ")],
            ledger_items=[line(1, 5, "75.00", reference="")],
            window_days=3,
        )

        assert result.proposals[0].tier == MatchTier.AMOUNT_DATE_ONLY


class TestAssignment:
    def test_one_line_two_bank_items_is_contested(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "40.00"), bank(2, 7, "40.00")],
            ledger_items=[line(1, 5, "40.00")],
            window_days=3,
        )

        assert len(result.proposals) == 1
        proposal = result.proposals[0]
        assert proposal.bank_transaction_id == _uuid(1)
        assert proposal.alternative_bank_transaction_ids == (_uuid(2),)
        assert [c.bank_transaction_id for c in result.contested] == [_uuid(2)]
        assert result.contested[0].candidate_ledger_line_ids == (_uuid(1001),)
        assert result.unmatched_bank_transaction_ids == (_uuid(2),)

    def test_each_side_used_once(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "40.00"), bank(2, 6, "40.00")],
            ledger_items=[line(1, 5, "40.00"), line(2, 6, "40.00")],
            window_days=3,
        )

        pairs = {(p.bank_transaction_id, p.ledger_line_id) for p in result.proposals}
        assert pairs == {(_uuid(1), _uuid(1001)), (_uuid(2), _uuid(1002))}
        assert result.unmatched_bank_transaction_ids == ()
        assert result.unmatched_ledger_line_ids == ()

    def test_proposal_lookup(self, engine):
        result = engine.suggest(
            bank_items=[bank(1, 5, "40.00")], ledger_items=[line(1, 5, "40.00")], window_days=3
        )

        assert result.proposal_for(_uuid(1)).ledger_line_id == _uuid(1001)
        assert result.proposal_for(_uuid(99)) is None


class TestDeterminism:
    def test_input_order_does_not_matter(self, engine):
        banks = [bank(1, 5, "40.00"), bank(2, 6, "40.00"), bank(3, 6, "12.00")]
        lines = [line(1, 5, "40.00"), line(2, 7, "40.00"), line(3, 4, "12.00")]

        forward = engine.suggest(bank_items=banks, ledger_items=lines, window_days=3)
        backward = engine.suggest(bank_items=banks[::-1], ledger_items=lines[::-1], window_days=3)

        assert set(forward.proposals) == set(backward.proposals)

    def test_fingerprint_is_stable(self):
        kwargs = {"bank_items": [bank(1, 5, "40.00")], "ledger_items": [line(1, 5, "40.00")], "window_days": 3}
        fields = ("bank_items", "ledger_items", "window_days")

        assert compute_input_fingerprint(fields, kwargs) == compute_input_fingerprint(fields, dict(kwargs))
        assert compute_input_fingerprint(fields, kwargs) != compute_input_fingerprint(
            fields, {**kwargs, "window_days": 4}
        )

    def test_trace_logged(self, engine, captured_logs):
        engine.suggest(bank_items=[], ledger_items=[], window_days=3)

        traces = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_TRACE"]
        assert traces and traces[0]["engine_name"] == "bank_matching"


@settings(max_examples=50, deadline=None)
@given(
    bank_amounts=st.lists(st.sampled_from(["10.00", "20.00", "30.00"]), max_size=6),
    line_amounts=st.lists(st.sampled_from(["10.00", "20.00", "30.00"]), max_size=6),
    bank_days=st.lists(st.integers(min_value=1, max_value=28), min_size=6, max_size=6),
    line_days=st.lists(st.integers(min_value=1, max_value=28), min_size=6, max_size=6),
)
def test_every_item_accounted_for_once(bank_amounts, line_amounts, bank_days, line_days):
    banks = [bank(i, bank_days[i], amount) for i, amount in enumerate(bank_amounts)]
    lines = [line(i, line_days[i], amount) for i, amount in enumerate(line_amounts)]

    result = BankMatchingEngine().suggest(bank_items=banks, ledger_items=lines, window_days=3)

    proposed_banks = [p.bank_transaction_id for p in result.proposals]
    proposed_lines = [p.ledger_line_id for p in result.proposals]
    assert len(set(proposed_banks)) == len(proposed_banks)
    assert len(set(proposed_lines)) == len(proposed_lines)
    assert sorted(proposed_banks + list(result.unmatched_bank_transaction_ids)) == sorted(b.id for b in banks)
    assert sorted(proposed_lines + list(result.unmatched_ledger_line_ids)) == sorted(item.id for item in lines)
    for proposal in result.proposals:
        assert proposal.amount == next(b.amount for b in banks if b.id == proposal.bank_transaction_id)
