"""
Chart of accounts tests.

Verifies:
- Account codes are unique per tenant, not globally
- Parent links never form a cycle and never cross tenants
- Header accounts roll up their subtree and cannot be posted to
- Deactivation is refused while a balance or active child remains, including
  a revenue or expense balance not yet closed out of an open fiscal year
- Updates are merged and validated as one unit
"""

from datetime import date
from decimal import Decimal

import pytest

from ledger_kernel.domain.dtos import AccountUpdate, LineSpec
from ledger_kernel.exceptions import (
    AccountInUseError,
    CycleError,
    DuplicateCodeError,
    HeaderAccountNotPostableError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.services.account_registry import AccountRegistry
from tests.conftest import OTHER_TENANT, TENANT, build_chart, close_periods_through


class TestAccountTypes:
    def test_seed_is_idempotent(self, core):
        first = core.seed_account_types(TENANT).unwrap()
        second = core.seed_account_types(TENANT).unwrap()

        assert [t.code for t in first] == ["ASSET", "LIABILITY", "EQUITY", "REVENUE", "EXPENSE"]
        assert [t.id for t in first] == [t.id for t in second]

    def test_normal_balance_follows_category(self, core):
        types = {t.code: t for t in core.seed_account_types(TENANT).unwrap()}

        assert types["ASSET"].normal_balance == "debit"
        assert types["EXPENSE"].normal_balance == "debit"
        assert types["LIABILITY"].normal_balance == "credit"
        assert types["EQUITY"].normal_balance == "credit"
        assert types["REVENUE"].normal_balance == "credit"

    def test_custom_type_with_explicit_normal_balance(self, core):
        contra = core.create_account_type(TENANT, "CONTRA_ASSET", "Contra assets", "asset", "credit").unwrap()

        assert contra.category == "asset"
        assert contra.normal_balance == "credit"

    def test_unknown_category_rejected(self, core):
        result = core.create_account_type(TENANT, "ODD", "Odd", "income")

        assert result.error_code == "VALIDATION_ERROR"


class TestCreateAccount:
    def test_create_account_snapshot(self, core, chart):
        info = core.get_account(TENANT, chart.cash).unwrap()

        assert info.code == "1000"
        assert info.category == "asset"
        assert info.normal_balance == "debit"
        assert info.parent_id == chart.assets_header
        assert info.is_active
        assert info.tags == ("bank",)
        assert info.current_balance == Decimal("0")

    def test_duplicate_code_in_same_tenant_rejected(self, core, chart):
        result = core.create_account(TENANT, "1000", "Another cash", "ASSET")

        assert not result.is_success
        assert isinstance(result.error, DuplicateCodeError)

    def test_same_code_allowed_in_other_tenant(self, core, chart):
        core.seed_account_types(OTHER_TENANT).unwrap()
        result = core.create_account(OTHER_TENANT, "1000", "Cash", "ASSET")

        assert result.is_success
        assert result.value.tenant_id == OTHER_TENANT

    def test_unknown_account_type_rejected(self, core, chart):
        result = core.create_account(TENANT, "9000", "Mystery", "NOPE")

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error.field == "account_type_code"

    def test_blank_code_rejected(self, core, chart):
        assert core.create_account(TENANT, "  ", "Blank", "ASSET").error_code == "VALIDATION_ERROR"

    def test_missing_tenant_rejected(self, core, chart):
        result = core.create_account("", "1234", "No tenant", "ASSET")

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error.field == "tenant_id"

    def test_parent_from_other_tenant_rejected(self, core, chart):
        other = build_chart(core, OTHER_TENANT)
        result = core.create_account(TENANT, "1200", "Cross", "ASSET", parent_id=other.assets_header)

        assert isinstance(result.error, CycleError)

    def test_header_with_opening_balance_rejected(self, core, chart):
        result = core.create_account(TENANT, "2", "Liabilities", "LIABILITY", is_header=True, opening_balance="10.00")

        assert result.error_code == "VALIDATION_ERROR"

    def test_opening_balance_with_three_decimals_rejected(self, core, chart):
        result = core.create_account(TENANT, "1300", "Petty cash", "ASSET", opening_balance="1.005")

        assert result.error_code == "VALIDATION_ERROR"


class TestHierarchy:
    def test_reparent_under_own_descendant_is_a_cycle(self, core, chart):
        child_header = core.create_account(
            TENANT, "11", "Current assets", "ASSET", parent_id=chart.assets_header, is_header=True
        ).unwrap()

        result = core.update_account(TENANT, chart.assets_header, AccountUpdate(parent_id=child_header.id))

        assert isinstance(result.error, CycleError)
        assert core.get_account(TENANT, chart.assets_header).unwrap().parent_id is None

    def test_reparent_under_itself_is_a_cycle(self, core, chart):
        result = core.update_account(TENANT, chart.cash, AccountUpdate(parent_id=chart.cash))

        assert isinstance(result.error, CycleError)

    def test_header_balance_rolls_up_subtree(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "300.00", date(2024, 3, 5))
        post_entry(chart.receivables, chart.revenue, "200.00", date(2024, 3, 6))
        post_entry(chart.expenses, chart.cash, "50.00", date(2024, 3, 7))

        header = core.compute_balance(TENANT, chart.assets_header, date(2024, 3, 31)).unwrap()

        assert header.includes_subtree
        assert header.balance == Decimal("450.00")

    def test_posting_to_header_rejected(self, core, chart):
        result = core.post(
            TENANT,
            date(2024, 3, 5),
            [
                LineSpec.debit_line(chart.assets_header, Decimal("10.00")),
                LineSpec.credit_line(chart.revenue, Decimal("10.00")),
            ],
        )

        assert isinstance(result.error, HeaderAccountNotPostableError)


class TestUpdateAccount:
    def test_update_merges_fields(self, core, chart):
        updated = core.update_account(
            TENANT, chart.receivables, AccountUpdate(name="Trade receivables", tags=("ar",))
        ).unwrap()

        assert updated.name == "Trade receivables"
        assert updated.tags == ("ar",)
        assert updated.parent_id == chart.assets_header

    def test_clear_parent_moves_to_root(self, core, chart):
        updated = core.update_account(TENANT, chart.receivables, AccountUpdate(clear_parent=True)).unwrap()

        assert updated.parent_id is None

    def test_clear_parent_and_parent_id_are_exclusive(self, core, chart):
        result = core.update_account(
            TENANT, chart.receivables, AccountUpdate(parent_id=chart.assets_header, clear_parent=True)
        )

        assert result.error_code == "VALIDATION_ERROR"

    def test_invalid_update_changes_nothing(self, core, chart):
        result = core.update_account(TENANT, chart.cash, AccountUpdate(name="Renamed", parent_id=chart.cash))

        assert not result.is_success
        assert core.get_account(TENANT, chart.cash).unwrap().name == "Operating Cash"


class TestDeactivate:
    def test_deactivate_unused_account(self, core, chart):
        info = core.deactivate_account(TENANT, chart.payables).unwrap()

        assert not info.is_active
        active_codes = [a.code for a in core.get_accounts(TENANT, active_only=True).unwrap()]
        assert "2000" not in active_codes

    def test_deactivate_with_balance_rejected(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "10.00", date(2024, 3, 5))

        result = core.deactivate_account(TENANT, chart.cash)

        assert isinstance(result.error, AccountInUseError)

    def test_deactivate_header_with_active_child_rejected(self, core, chart):
        result = core.deactivate_account(TENANT, chart.assets_header)

        assert isinstance(result.error, AccountInUseError)

    def test_deactivate_with_balance_in_open_year_rejected(self, core, chart, post_entry):
        core.create_fiscal_year(TENANT, "FY2025", date(2025, 1, 1), date(2025, 12, 31)).unwrap()
        post_entry(chart.cash, chart.revenue, "100.00", date(2024, 3, 5))
        post_entry(chart.revenue, chart.cash, "100.00", date(2025, 1, 10))
        assert core.compute_balance(TENANT, chart.revenue, date(2025, 12, 31)).unwrap().balance == Decimal("0.00")

        result = core.deactivate_account(TENANT, chart.revenue)

        assert isinstance(result.error, AccountInUseError)
        assert "FY2024" in result.error.reason
        close_periods_through(core, TENANT, 12)
        assert core.close_year(TENANT, chart.fiscal_year).unwrap().is_closed

    def test_posting_to_inactive_account_rejected(self, core, chart):
        core.deactivate_account(TENANT, chart.payables).unwrap()

        result = core.post(
            TENANT,
            date(2024, 3, 5),
            [
                LineSpec.debit_line(chart.cash, Decimal("10.00")),
                LineSpec.credit_line(chart.payables, Decimal("10.00")),
            ],
        )

        assert isinstance(result.error, UnknownAccountError)


class TestBalances:
    def test_opening_balance_counts_from_its_date(self, core, chart):
        savings = core.create_account(
            TENANT,
            "1050",
            "Savings",
            "ASSET",
            opening_balance="1000.00",
            opening_balance_date=date(2024, 2, 1),
        ).unwrap()

        before = core.compute_balance(TENANT, savings.id, date(2024, 1, 31)).unwrap()
        after = core.compute_balance(TENANT, savings.id, date(2024, 2, 1)).unwrap()

        assert before.balance == Decimal("0")
        assert after.balance == Decimal("1000.00")

    def test_credit_normal_balance_sign(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "125.50", date(2024, 3, 5))

        revenue = core.compute_balance(TENANT, chart.revenue, date(2024, 3, 31)).unwrap()

        assert revenue.credit_total == Decimal("125.50")
        assert revenue.balance == Decimal("125.50")

    def test_balance_ignores_later_entries(self, core, chart, post_entry):
        post_entry(chart.cash, chart.revenue, "100.00", date(2024, 3, 5))
        post_entry(chart.cash, chart.revenue, "40.00", date(2024, 3, 20))

        balance = core.compute_balance(TENANT, chart.cash, date(2024, 3, 10)).unwrap()

        assert balance.balance == Decimal("100.00")

    def test_unknown_account_id(self, core, chart):
        result = core.compute_balance(TENANT, chart.fiscal_year, date(2024, 3, 10))

        assert isinstance(result.error, UnknownAccountError)


class TestRegistryInsideCallerTransaction:
    def test_registry_flushes_but_never_commits(self, session, session_factory):
        registry = AccountRegistry(session)
        registry.seed_default_account_types(TENANT)
        registry.create_account(TENANT, "1000", "Cash", "ASSET")
        session.rollback()

        with session_factory() as other:
            assert AccountRegistry(other).get_accounts(TENANT) == []

    def test_account_id_from_other_tenant_is_unknown(self, session):
        registry = AccountRegistry(session)
        registry.seed_default_account_types(TENANT)
        registry.seed_default_account_types(OTHER_TENANT)
        foreign = registry.create_account(OTHER_TENANT, "1000", "Cash", "ASSET")

        with pytest.raises(UnknownAccountError):
            registry.get_account(TENANT, foreign.id)

    def test_name_required(self, session):
        registry = AccountRegistry(session)
        registry.seed_default_account_types(TENANT)

        with pytest.raises(ValidationError):
            registry.create_account(TENANT, "1000", " ", "ASSET")
