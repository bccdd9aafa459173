"""
Trial balance and account statement tests.

Verifies:
- Grand debit and credit totals are equal for every ledger state
- Rows are signed on the account's normal side
- Zero rows are filtered without changing the grand totals
- Statements carry an opening balance and a running balance
"""

from datetime import date
from decimal import Decimal

from ledger_kernel.domain.dtos import LineSpec
from ledger_kernel.exceptions import UnknownAccountError
from tests.conftest import OTHER_TENANT, TENANT, build_chart


class TestTrialBalance:
    def test_rows_and_totals(self, core, chart, post_entry):
        post_entry(chart.cash, chart.capital, "5000.00", date(2024, 1, 2))
        post_entry(chart.cash, chart.revenue, "1200.00", date(2024, 2, 3))
        post_entry(chart.expenses, chart.cash, "300.00", date(2024, 2, 4))

        tb = core.trial_balance(TENANT, date(2024, 12, 31)).unwrap()

        assert tb.is_balanced
        assert tb.total_debits == Decimal("6500.00")
        assert [row.account_code for row in tb.rows] == ["1000", "3000", "4000", "5000"]
        assert tb.row_for("1000").balance == Decimal("5900.00")
        assert tb.row_for("3000").balance == Decimal("5000.00")
        assert tb.row_for("4000").balance == Decimal("1200.00")
        assert tb.row_for("5000").balance == Decimal("300.00")

    def test_as_of_date_is_inclusive(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 3))
        post_entry(chart.cash, chart.revenue, "20.00", date(2024, 2, 4))

        tb = core.trial_balance(TENANT, date(2024, 2, 3)).unwrap()

        assert tb.row_for("1000").debit_total == Decimal("10.00")

    def test_include_zero_lists_every_postable_account(self, core, chart):
        tb = core.trial_balance(TENANT, date(2024, 12, 31), include_zero=True).unwrap()

        codes = [row.account_code for row in tb.rows]
        assert codes == ["1000", "1100", "2000", "3000", "3900", "4000", "5000"]
        assert "1" not in codes

    def test_drafts_are_excluded(self, core, chart, post_entry):
        core.save_draft(
            TENANT,
            date(2024, 2, 3),
            [LineSpec.debit_line(chart.cash, Decimal("99.00")), LineSpec.credit_line(chart.revenue, Decimal("99.00"))],
        ).unwrap()

        tb = core.trial_balance(TENANT, date(2024, 12, 31)).unwrap()

        assert tb.total_debits == Decimal("0")

    def test_tenants_are_isolated(self, core, chart, post_entry):
        other = build_chart(core, OTHER_TENANT)
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 3))
        post_entry(other.cash, other.revenue, "777.00", date(2024, 2, 3), tenant_id=OTHER_TENANT)

        mine = core.trial_balance(TENANT, date(2024, 12, 31)).unwrap()
        global_debits, global_credits = core.ledger_totals().unwrap()

        assert mine.total_debits == Decimal("10.00")
        assert global_debits == global_credits == Decimal("787.00")


class TestAccountStatement:
    def test_running_balance(self, core, chart, post_entry):
        post_entry(chart.cash, chart.capital, "1000.00", date(2024, 1, 15))
        first = post_entry(chart.cash, chart.revenue, "200.00", date(2024, 2, 3), reference="INV-1")
        second = post_entry(chart.expenses, chart.cash, "50.00", date(2024, 2, 20))
        post_entry(chart.cash, chart.revenue, "5.00", date(2024, 3, 1))

        statement = core.account_statement(TENANT, chart.cash, date(2024, 2, 1), date(2024, 2, 29)).unwrap()

        assert statement.opening_balance == Decimal("1000.00")
        assert [line.entry_id for line in statement.lines] == [first.id, second.id]
        assert [line.running_balance for line in statement.lines] == [Decimal("1200.00"), Decimal("1150.00")]
        assert statement.lines[0].reference == "INV-1"
        assert statement.closing_balance == Decimal("1150.00")

    def test_inverted_range_rejected(self, core, chart):
        result = core.account_statement(TENANT, chart.cash, date(2024, 3, 1), date(2024, 2, 1))

        assert result.error_code == "VALIDATION_ERROR"

    def test_unknown_account(self, core, chart):
        other = build_chart(core, OTHER_TENANT)
        result = core.account_statement(TENANT, other.cash, date(2024, 1, 1), date(2024, 2, 1))

        assert isinstance(result.error, UnknownAccountError)
