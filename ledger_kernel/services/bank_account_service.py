"""
BankAccountService -- bank accounts and imported statement transactions.

Responsibility:
    Registers bank accounts against a postable asset account in the chart
    of accounts and records the transactions of external bank statements,
    singly or as an import batch with duplicate detection.

Architecture position:
    Kernel > Services.  Feeds BankStatementMatcher and ReconciliationSession;
    never touches ledger lines.

Invariants enforced:
    - A bank account's GL account is active, postable and of category asset.
    - (date, amount, reference) is unique per bank account; references are
      compared trimmed and case-insensitively.
    - Reconciled transactions cannot be deleted.

Failure modes:
    - BankAccountNotFoundError, DuplicateCodeError, ValidationError.
    - DuplicateBankTransactionError from record_transaction (imports skip
      duplicates and report them instead).
    - AlreadyReconciledError from delete_transaction.
"""

from collections.abc import Iterable
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, parse_amount, round_money
from ledger_kernel.domain.dtos import (
    BankAccountInfo,
    BankTransactionInfo,
    BankTransactionSpec,
    ImportResult,
)
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import (
    AlreadyReconciledError,
    BankAccountNotFoundError,
    DuplicateBankTransactionError,
    DuplicateCodeError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountCategory
from ledger_kernel.models.bank import BankAccount, BankTransaction
from ledger_kernel.services.base import BaseService

logger = get_logger("services.bank_account")


def normalize_reference(reference: str | None) -> str:
    return (reference or "").strip().lower()


def _dedup_key(transaction_date: date, amount: Decimal, reference: str | None) -> tuple:
    return transaction_date, round_money(amount), normalize_reference(reference)


class BankAccountService(BaseService[BankAccount]):
    """Bank accounts and their statement lines."""

    def create_bank_account(
        self,
        tenant_id: str,
        code: str,
        name: str,
        gl_account_id: UUID,
        currency: str = "USD",
        opening_balance: Decimal | int | str = ZERO,
    ) -> BankAccountInfo:
        require_tenant(tenant_id)
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("code is required", field="code")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required", field="name")
        if not isinstance(currency, str) or len(currency.strip()) != 3:
            raise ValidationError("currency must be a 3-letter ISO code", field="currency")
        code = code.strip()
        opening = parse_amount(opening_balance, field="opening_balance")

        gl_account = self.session.execute(
            select(Account).where(Account.id == gl_account_id, Account.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if gl_account is None:
            raise UnknownAccountError(str(gl_account_id), tenant_id)
        if not gl_account.is_postable:
            raise ValidationError(
                f"GL account {gl_account.code} must be active and postable", field="gl_account_id"
            )
        if gl_account.category != AccountCategory.ASSET:
            raise ValidationError(
                f"GL account {gl_account.code} must be an asset account", field="gl_account_id"
            )

        existing = self.session.execute(
            select(BankAccount.id).where(BankAccount.tenant_id == tenant_id, BankAccount.code == code)
        ).first()
        if existing is not None:
            raise DuplicateCodeError("BankAccount", code, tenant_id)

        bank_account = BankAccount(
            tenant_id=tenant_id,
            code=code,
            name=name.strip(),
            gl_account_id=gl_account.id,
            currency=currency.strip().upper(),
            opening_balance=opening,
            is_active=True,
        )
        self.session.add(bank_account)
        self.session.flush()

        logger.info(
            "bank_account_created",
            extra={
                "bank_account_id": str(bank_account.id),
                "code": code,
                "gl_account_code": gl_account.code,
            },
        )
        return BankAccountInfo.from_model(bank_account)

    def get_bank_account(self, tenant_id: str, bank_account_id: UUID) -> BankAccountInfo:
        return BankAccountInfo.from_model(self.load_bank_account(tenant_id, bank_account_id))

    def list_bank_accounts(self, tenant_id: str) -> list[BankAccountInfo]:
        require_tenant(tenant_id)
        accounts = self.session.execute(
            select(BankAccount).where(BankAccount.tenant_id == tenant_id).order_by(BankAccount.code)
        ).scalars()
        return [BankAccountInfo.from_model(a) for a in accounts]

    def load_bank_account(self, tenant_id: str, bank_account_id: UUID) -> BankAccount:
        require_tenant(tenant_id)
        bank_account = self.session.execute(
            select(BankAccount).where(BankAccount.id == bank_account_id, BankAccount.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if bank_account is None:
            raise BankAccountNotFoundError(str(bank_account_id))
        return bank_account

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def record_transaction(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        spec: BankTransactionSpec,
    ) -> BankTransactionInfo:
        """Record one statement line; a duplicate raises."""
        bank_account = self.load_bank_account(tenant_id, bank_account_id)
        amount = self._validated_amount(spec)
        if _dedup_key(spec.transaction_date, amount, spec.reference) in self._existing_keys(
            bank_account, [spec.transaction_date]
        ):
            raise DuplicateBankTransactionError(
                str(bank_account.id), str(spec.transaction_date), str(amount), spec.reference
            )
        transaction = self._insert(bank_account, spec, amount)
        self.session.flush()
        logger.info(
            "bank_transaction_recorded",
            extra={
                "bank_transaction_id": str(transaction.id),
                "bank_account_id": str(bank_account.id),
                "amount": amount,
            },
        )
        return BankTransactionInfo.from_model(transaction)

    def import_transactions(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        specs: Iterable[BankTransactionSpec],
    ) -> ImportResult:
        """
        Import a statement batch.

        Lines matching an existing transaction, or an earlier line of the
        same batch, are skipped and reported in ``duplicates``.  Invalid
        lines reject the whole batch.
        """
        bank_account = self.load_bank_account(tenant_id, bank_account_id)
        specs = list(specs)
        validated = [(spec, self._validated_amount(spec)) for spec in specs]
        seen = self._existing_keys(bank_account, {spec.transaction_date for spec in specs})

        imported: list[BankTransaction] = []
        duplicates: list[BankTransactionSpec] = []
        for spec, amount in validated:
            key = _dedup_key(spec.transaction_date, amount, spec.reference)
            if key in seen:
                duplicates.append(spec)
                continue
            seen.add(key)
            imported.append(self._insert(bank_account, spec, amount))
        self.session.flush()

        logger.info(
            "bank_statement_imported",
            extra={
                "bank_account_id": str(bank_account.id),
                "imported_count": len(imported),
                "duplicate_count": len(duplicates),
            },
        )
        return ImportResult(
            imported=tuple(BankTransactionInfo.from_model(t) for t in imported),
            duplicates=tuple(duplicates),
        )

    def list_transactions(
        self,
        tenant_id: str,
        bank_account_id: UUID,
        unreconciled_only: bool = False,
    ) -> list[BankTransactionInfo]:
        bank_account = self.load_bank_account(tenant_id, bank_account_id)
        query = select(BankTransaction).where(BankTransaction.bank_account_id == bank_account.id)
        if unreconciled_only:
            query = query.where(BankTransaction.is_reconciled.is_(False))
        query = query.order_by(BankTransaction.transaction_date, BankTransaction.created_at)
        return [BankTransactionInfo.from_model(t) for t in self.session.execute(query).scalars()]

    def delete_transaction(self, tenant_id: str, transaction_id: UUID) -> None:
        require_tenant(tenant_id)
        transaction = self.session.execute(
            select(BankTransaction)
            .where(BankTransaction.id == transaction_id, BankTransaction.tenant_id == tenant_id)
            .with_for_update()
        ).scalar_one_or_none()
        if transaction is None:
            raise ValidationError(f"unknown bank transaction: {transaction_id}", field="transaction_id")
        if transaction.is_reconciled:
            raise AlreadyReconciledError(bank_transaction_ids=[str(transaction.id)])
        self.session.delete(transaction)
        self.session.flush()
        logger.info("bank_transaction_deleted", extra={"bank_transaction_id": str(transaction_id)})

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _validated_amount(spec: BankTransactionSpec) -> Decimal:
        if not isinstance(spec, BankTransactionSpec):
            raise ValidationError("expected a BankTransactionSpec", field="transactions")
        if not isinstance(spec.transaction_date, date):
            raise ValidationError("transaction_date must be a date", field="transaction_date")
        amount = parse_amount(spec.amount)
        if amount == ZERO:
            raise ValidationError("bank transaction amount must be non-zero", field="amount")
        return amount

    def _existing_keys(self, bank_account: BankAccount, dates: Iterable[date]) -> set[tuple]:
        dates = list(dates)
        if not dates:
            return set()
        rows = self.session.execute(
            select(
                BankTransaction.transaction_date,
                BankTransaction.amount,
                BankTransaction.reference,
            ).where(
                BankTransaction.bank_account_id == bank_account.id,
                BankTransaction.transaction_date.in_(dates),
            )
        ).all()
        return {_dedup_key(row.transaction_date, row.amount, row.reference) for row in rows}

    def _insert(self, bank_account: BankAccount, spec: BankTransactionSpec, amount: Decimal) -> BankTransaction:
        transaction = BankTransaction(
            tenant_id=bank_account.tenant_id,
            bank_account_id=bank_account.id,
            transaction_date=spec.transaction_date,
            amount=amount,
            reference=spec.reference.strip() if spec.reference else None,
            description=spec.description,
            is_reconciled=False,
        )
        self.session.add(transaction)
        return transaction
