"""
Property-based tests for the posting invariants.

Hypothesis generates batches of entries, some of them deliberately out of
balance, and checks after every batch that:
- the trial balance debits equal its credits
- every account's stored running balance equals its recomputed balance
- rejected entries moved nothing
"""

from datetime import date
from decimal import Decimal

from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_kernel.domain.dtos import LineSpec
from tests.conftest import TENANT

AS_OF = date(2024, 12, 31)

amounts = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("999999.99"), places=2)

entry_shapes = st.tuples(
    st.integers(min_value=0, max_value=6),
    st.integers(min_value=0, max_value=6),
    amounts,
    st.one_of(st.just(Decimal("0")), amounts),
    st.dates(min_value=date(2024, 1, 1), max_value=date(2024, 12, 31)),
)

_FUZZ_SETTINGS = settings(
    max_examples=30,
    deadline=None,
    suppress_health_check=[HealthCheck.function_scoped_fixture, HealthCheck.too_slow],
)


def _account_ids(chart):
    return [
        chart.cash,
        chart.receivables,
        chart.payables,
        chart.capital,
        chart.retained_earnings,
        chart.revenue,
        chart.expenses,
    ]


@_FUZZ_SETTINGS
@given(batch=st.lists(entry_shapes, min_size=1, max_size=8))
def test_trial_balance_always_balances(core, chart, batch):
    accounts = _account_ids(chart)
    before = core.trial_balance(TENANT, AS_OF).unwrap()

    expected_delta = Decimal("0")
    for debit_index, credit_index, amount, skew, entry_date in batch:
        result = core.post(
            TENANT,
            entry_date,
            [
                LineSpec.debit_line(accounts[debit_index], amount),
                LineSpec.credit_line(accounts[credit_index], amount + skew),
            ],
        )
        assert result.is_success == (skew == Decimal("0"))
        if result.is_success:
            expected_delta += amount

    after = core.trial_balance(TENANT, AS_OF).unwrap()
    assert after.is_balanced
    assert after.total_debits - before.total_debits == expected_delta

    for account_id in accounts:
        stored = core.get_account(TENANT, account_id).unwrap().current_balance
        computed = core.compute_balance(TENANT, account_id, AS_OF).unwrap().balance
        assert stored == computed


@_FUZZ_SETTINGS
@given(amount=amounts, entry_date=st.dates(min_value=date(2024, 1, 1), max_value=date(2024, 12, 31)))
def test_reversal_restores_every_balance(core, chart, amount, entry_date):
    before = {a: core.get_account(TENANT, a).unwrap().current_balance for a in (chart.cash, chart.revenue)}

    entry = core.post(
        TENANT,
        entry_date,
        [LineSpec.debit_line(chart.cash, amount), LineSpec.credit_line(chart.revenue, amount)],
    ).unwrap()
    core.reverse_entry(TENANT, entry.id, reversal_date=entry_date).unwrap()

    after = {a: core.get_account(TENANT, a).unwrap().current_balance for a in (chart.cash, chart.revenue)}
    assert after == before
