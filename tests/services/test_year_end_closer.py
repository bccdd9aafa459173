"""
Year-end close tests.

Verifies:
- The closing entry zeroes every revenue and expense account as of year end
- Net income (or loss) lands in the retained earnings account
- A year closes once, and only after all its periods are closed
- The retained earnings account is resolved by tag or given explicitly
"""

from datetime import date
from decimal import Decimal

from ledger_kernel.domain.dtos import AccountUpdate
from ledger_kernel.domain.events import YEAR_CLOSED
from ledger_kernel.exceptions import AlreadyClosedError, SequentialCloseViolationError
from tests.conftest import TENANT, close_periods_through

YEAR_END = date(2024, 12, 31)


def _balance(core, account_id, as_of=YEAR_END):
    return core.compute_balance(TENANT, account_id, as_of).unwrap().balance


class TestCloseYear:
    def test_net_income_moves_to_retained_earnings(self, core, chart, post_entry, publisher):
        post_entry(chart.cash, chart.revenue, "80000.00", date(2024, 6, 30))
        post_entry(chart.expenses, chart.cash, "30000.00", date(2024, 9, 15))
        close_periods_through(core, TENANT, 12)

        year = core.close_year(TENANT, chart.fiscal_year).unwrap()

        assert year.status == "closed"
        assert _balance(core, chart.revenue) == Decimal("0.00")
        assert _balance(core, chart.expenses) == Decimal("0.00")
        assert _balance(core, chart.retained_earnings) == Decimal("50000.00")
        assert _balance(core, chart.cash) == Decimal("50000.00")
        assert core.trial_balance(TENANT, YEAR_END).unwrap().is_balanced

        closing = core.get_entry(TENANT, year.closing_entry_id).unwrap()
        assert closing.entry_type == "closing"
        assert closing.entry_date == YEAR_END
        assert sum(line.debit_amount for line in closing.lines) == Decimal("80000.00")
        assert sum(line.credit_amount for line in closing.lines) == Decimal("80000.00")

        events = publisher.of_type(YEAR_CLOSED)
        assert len(events) == 1
        assert events[0].payload["net_income"] == "50000.00"

    def test_net_loss_debits_retained_earnings(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "100.00", date(2024, 2, 1))
        post_entry(chart.expenses, chart.cash, "300.00", date(2024, 2, 2))
        close_periods_through(core, TENANT, 12)

        core.close_year(TENANT, chart.fiscal_year).unwrap()

        assert _balance(core, chart.retained_earnings) == Decimal("-200.00")
        assert _balance(core, chart.expenses) == Decimal("0.00")

    def test_year_without_activity_closes_without_entry(self, core, chart):
        close_periods_through(core, TENANT, 12)

        year = core.close_year(TENANT, chart.fiscal_year).unwrap()

        assert year.closing_entry_id is None
        assert year.status == "closed"

    def test_second_close_rejected(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 1))
        close_periods_through(core, TENANT, 12)
        core.close_year(TENANT, chart.fiscal_year).unwrap()

        result = core.close_year(TENANT, chart.fiscal_year)

        assert isinstance(result.error, AlreadyClosedError)
        assert _balance(core, chart.retained_earnings) == Decimal("10.00")

    def test_open_periods_block_close(self, core, chart):
        close_periods_through(core, TENANT, 10)

        result = core.close_year(TENANT, chart.fiscal_year)

        assert isinstance(result.error, SequentialCloseViolationError)
        assert result.error.blocking_periods == ["FY2024-11", "FY2024-12"]

    def test_failed_close_leaves_nothing_behind(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 1))
        close_periods_through(core, TENANT, 12)

        result = core.close_year(TENANT, chart.fiscal_year, retained_earnings_account_id=chart.cash)

        assert result.error_code == "VALIDATION_ERROR"
        assert _balance(core, chart.revenue) == Decimal("10.00")
        assert core.close_year(TENANT, chart.fiscal_year).is_success


class TestRetainedEarningsResolution:
    def test_missing_tag_rejected(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 1))
        core.update_account(TENANT, chart.retained_earnings, AccountUpdate(tags=())).unwrap()
        close_periods_through(core, TENANT, 12)

        result = core.close_year(TENANT, chart.fiscal_year)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error.field == "retained_earnings_account_id"

    def test_ambiguous_tag_rejected(self, core, chart, post_entry):
        core.create_account(TENANT, "3910", "Prior Retained Earnings", "EQUITY", tags=["retained_earnings"]).unwrap()
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 1))
        close_periods_through(core, TENANT, 12)

        result = core.close_year(TENANT, chart.fiscal_year)

        assert result.error_code == "VALIDATION_ERROR"
        assert "3900" in result.message and "3910" in result.message

    def test_explicit_account(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 2, 1))
        close_periods_through(core, TENANT, 12)

        core.close_year(TENANT, chart.fiscal_year, retained_earnings_account_id=chart.capital).unwrap()

        assert _balance(core, chart.capital) == Decimal("10.00")
        assert _balance(core, chart.retained_earnings) == Decimal("0.00")
