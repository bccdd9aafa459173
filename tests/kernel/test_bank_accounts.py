"""
Bank account and statement import tests.

Verifies:
- A bank account must sit on an active, postable asset GL account
- Duplicate statement lines (date, amount, normalized reference) are
  rejected on record and skipped on import, within a batch too
- Reconciled transactions cannot be deleted
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

from ledger_kernel.domain.dtos import BankTransactionSpec
from ledger_kernel.exceptions import (
    BankAccountNotFoundError,
    DuplicateBankTransactionError,
    DuplicateCodeError,
    UnknownAccountError,
)
from ledger_kernel.services.bank_account_service import normalize_reference
from tests.conftest import OTHER_TENANT, TENANT


def spec(day, amount, reference=None):
    return BankTransactionSpec(transaction_date=date(2024, 3, day), amount=Decimal(amount), reference=reference)


class TestCreateBankAccount:
    def test_create(self, core, chart):
        info = core.create_bank_account(TENANT, "BANK-1", "Operating", chart.cash, opening_balance="250.00").unwrap()

        assert info.gl_account_id == chart.cash
        assert info.currency == "USD"
        assert info.opening_balance == Decimal("250.00")

    def test_gl_account_must_be_asset(self, core, chart):
        result = core.create_bank_account(TENANT, "BANK-1", "Operating", chart.revenue)

        assert result.error_code == "VALIDATION_ERROR"
        assert result.error.field == "gl_account_id"

    def test_gl_account_cannot_be_header(self, core, chart):
        assert core.create_bank_account(TENANT, "BANK-1", "Operating", chart.assets_header).error_code == (
            "VALIDATION_ERROR"
        )

    def test_gl_account_of_other_tenant_unknown(self, core, chart):
        result = core.create_bank_account(OTHER_TENANT, "BANK-1", "Operating", chart.cash)

        assert isinstance(result.error, UnknownAccountError)

    def test_duplicate_code(self, core, chart, bank_account):
        result = core.create_bank_account(TENANT, "BANK-1", "Second", chart.cash)

        assert isinstance(result.error, DuplicateCodeError)


class TestRecordTransaction:
    def test_record(self, core, bank_account):
        info = core.record_bank_transaction(TENANT, bank_account, spec(5, "1500.00", "DEP-1")).unwrap()

        assert info.amount == Decimal("1500.00")
        assert not info.is_reconciled

    def test_duplicate_rejected(self, core, bank_account):
        core.record_bank_transaction(TENANT, bank_account, spec(5, "1500.00", "DEP-1")).unwrap()

        result = core.record_bank_transaction(TENANT, bank_account, spec(5, "1500.00", " dep-1 "))

        assert isinstance(result.error, DuplicateBankTransactionError)

    def test_zero_amount_rejected(self, core, bank_account):
        assert core.record_bank_transaction(TENANT, bank_account, spec(5, "0.00")).error_code == "VALIDATION_ERROR"

    def test_unknown_bank_account(self, core, chart):
        result = core.record_bank_transaction(TENANT, uuid4(), spec(5, "1.00"))

        assert isinstance(result.error, BankAccountNotFoundError)


class TestImport:
    def test_duplicates_skipped(self, core, bank_account):
        core.record_bank_transaction(TENANT, bank_account, spec(5, "1500.00", "DEP-1")).unwrap()

        result = core.import_bank_transactions(
            TENANT,
            bank_account,
            [
                spec(5, "1500.00", "DEP-1"),
                spec(6, "-42.10", "CHK-7"),
                spec(6, "-42.10", "chk-7"),
                spec(6, "-42.10", "CHK-8"),
            ],
        ).unwrap()

        assert result.imported_count == 2
        assert result.duplicate_count == 2
        assert [t.reference for t in result.imported] == ["CHK-7", "CHK-8"]

    def test_invalid_line_rejects_batch(self, core, bank_account):
        result = core.import_bank_transactions(TENANT, bank_account, [spec(5, "10.00"), spec(6, "1.005")])

        assert result.error_code == "VALIDATION_ERROR"
        retry = core.import_bank_transactions(TENANT, bank_account, [spec(5, "10.00")]).unwrap()
        assert retry.imported_count == 1


class TestDeleteTransaction:
    def test_delete_unreconciled(self, core, bank_account):
        info = core.record_bank_transaction(TENANT, bank_account, spec(5, "10.00")).unwrap()

        assert core.delete_bank_transaction(TENANT, info.id).is_success
        assert core.record_bank_transaction(TENANT, bank_account, spec(5, "10.00")).is_success

    def test_delete_unknown(self, core, bank_account):
        assert core.delete_bank_transaction(TENANT, uuid4()).error_code == "VALIDATION_ERROR"


def test_reference_normalization():
    assert normalize_reference("  AbC-1 ") == "abc-1"
    assert normalize_reference(None) == ""
