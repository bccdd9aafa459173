"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their ledger lines.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, entry_number) and (tenant_id, idempotency_key) are unique.
    - reversal_of_id is unique: an entry is reversed at most once.
    - Each line stores a positive amount; ``side`` carries the sign.
    - Posted entries and the financial fields of their lines are immutable
      (db/immutability.py).  Only the reconciliation link on a line moves.

Failure modes:
    - IntegrityError on a raced entry number or idempotency key.
    - ImmutabilityViolationError when a posted record is modified.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString, enum_column

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.cost_center import CostCenter


class JournalEntryStatus(str, Enum):
    DRAFT = "draft"
    POSTED = "posted"


class EntryType(str, Enum):
    STANDARD = "standard"
    REVERSAL = "reversal"
    CLOSING = "closing"


class LineSide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class JournalEntry(TrackedBase):
    """
    A balanced set of ledger lines recorded as one unit.

    Contract:
        A POSTED entry satisfies sum(debits) == sum(credits) and was written
        in a single transaction together with the account balance updates.
        DRAFT entries carry lines but no effect on balances or totals.
    """

    __tablename__ = "journal_entries"

    __table_args__ = (
        UniqueConstraint("tenant_id", "entry_number", name="uq_journal_tenant_number"),
        UniqueConstraint("tenant_id", "idempotency_key", name="uq_journal_tenant_idempotency"),
        UniqueConstraint("reversal_of_id", name="uq_journal_reversal_of"),
        Index("idx_journal_tenant_date", "tenant_id", "entry_date"),
        Index("idx_journal_status", "status"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # JE-000001 style; assigned when the entry is posted (drafts use DRAFT-...)
    entry_number: Mapped[str] = mapped_column(String(50), nullable=False)

    # Posting order within the tenant; 0 until posted
    seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry_date: Mapped[date] = mapped_column(nullable=False)

    # Source document reference (invoice number, cheque number, ...)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    entry_type: Mapped[EntryType] = mapped_column(
        enum_column(EntryType),
        default=EntryType.STANDARD,
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        enum_column(JournalEntryStatus),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    idempotency_key: Mapped[str | None] = mapped_column(String(255), nullable=True)

    reversal_of_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    posted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    lines: Mapped[list["LedgerLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="LedgerLine.line_seq",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} {self.entry_date} [{self.status.value}]>"

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def total_debits(self) -> Decimal:
        return sum((line.amount for line in self.lines if line.is_debit), Decimal("0"))

    @property
    def total_credits(self) -> Decimal:
        return sum((line.amount for line in self.lines if not line.is_debit), Decimal("0"))

    @property
    def is_balanced(self) -> bool:
        return self.total_debits == self.total_credits


class LedgerLine(TrackedBase):
    """
    One debit or one credit against a single account.

    Contract:
        amount > 0; the side column determines debit/credit.  line_seq orders
        lines within their entry.  is_reconciled / reconciliation_id are the
        only attributes that change after posting.
    """

    __tablename__ = "ledger_lines"

    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
        Index("idx_line_reconciliation", "reconciliation_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    side: Mapped[LineSide] = mapped_column(
        enum_column(LineSide, length=10),
        nullable=False,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 9), nullable=False)

    memo: Mapped[str | None] = mapped_column(String(500), nullable=True)

    cost_center_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("cost_centers.id"),
        nullable=True,
    )

    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_reconciled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    reconciliation_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("reconciliations.id"),
        nullable=True,
    )

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(back_populates="ledger_lines")

    cost_center: Mapped["CostCenter | None"] = relationship()

    def __repr__(self) -> str:
        return f"<LedgerLine {self.side.value} {self.amount}>"

    @property
    def is_debit(self) -> bool:
        return self.side == LineSide.DEBIT

    @property
    def debit_amount(self) -> Decimal:
        return self.amount if self.is_debit else Decimal("0")

    @property
    def credit_amount(self) -> Decimal:
        return Decimal("0") if self.is_debit else self.amount

    @property
    def signed_amount(self) -> Decimal:
        """Debit-positive amount."""
        return self.amount if self.is_debit else -self.amount
