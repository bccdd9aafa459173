"""
Module: ledger_kernel.models.bank
Responsibility: ORM persistence for bank accounts, imported bank statement
    transactions and reconciliation sessions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - A bank account is linked to exactly one postable GL account of its
      tenant; ledger activity on that account is what gets reconciled.
    - BankTransaction.amount is signed: positive = deposit, negative =
      withdrawal.  It compares directly to (debit - credit) on the GL account.
    - is_reconciled and reconciliation_id move together; a transaction in a
      COMPLETED reconciliation is immutable (db/immutability.py).
    - Reconciliations are never deleted; cancellation is a terminal status.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString, enum_column
from ledger_kernel.models.account import Account


class ReconciliationStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_active(self) -> bool:
        return self in (ReconciliationStatus.DRAFT, ReconciliationStatus.IN_PROGRESS)


class BankAccount(TrackedBase):
    """A tenant's bank account and its link into the chart of accounts."""

    __tablename__ = "bank_accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_bank_account_tenant_code"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    gl_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # Statement balance before the first reconciliation
    opening_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    gl_account: Mapped[Account] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<BankAccount {self.code}>"


class BankTransaction(TrackedBase):
    """One line of an external bank statement."""

    __tablename__ = "bank_transactions"

    __table_args__ = (
        Index("idx_bank_txn_account_reconciled", "bank_account_id", "is_reconciled"),
        Index("idx_bank_txn_dedup", "bank_account_id", "transaction_date", "amount"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    is_reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reconciliation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("reconciliations.id"),
        nullable=True,
    )

    matched_ledger_line_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_lines.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<BankTransaction {self.transaction_date} {self.amount}>"


class Reconciliation(TrackedBase):
    """
    A bank reconciliation session.

    Contract:
        At most one DRAFT/IN_PROGRESS session per bank account.  A COMPLETED
        session satisfies opening_balance + matched amounts ==
        statement_balance and is frozen from then on.
    """

    __tablename__ = "reconciliations"

    __table_args__ = (
        Index("idx_reconciliation_bank_status", "bank_account_id", "status"),
        Index("idx_reconciliation_tenant", "tenant_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    bank_account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bank_accounts.id"),
        nullable=False,
    )

    statement_date: Mapped[date] = mapped_column(nullable=False)

    statement_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    reconciled_balance: Mapped[Decimal | None] = mapped_column(Numeric(38, 9), nullable=True)

    status: Mapped[ReconciliationStatus] = mapped_column(
        enum_column(ReconciliationStatus),
        default=ReconciliationStatus.DRAFT,
        nullable=False,
    )

    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    bank_account: Mapped[BankAccount] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<Reconciliation {self.id} [{self.status.value}]>"
