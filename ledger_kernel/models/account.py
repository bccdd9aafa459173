"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts and the per-tenant
    account-type taxonomy.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, code) is unique for both account types and accounts.
    - An account's category and normal balance are copied from its type at
      creation; the type is immutable once referenced.
    - current_balance is expressed in the account's normal balance and is
      only written by LedgerPoster (and the opening balance at creation).

Failure modes:
    - IntegrityError on duplicate (tenant_id, code) when the registry's
      pre-check is raced by a concurrent insert.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString, enum_column

if TYPE_CHECKING:
    from ledger_kernel.models.journal import LedgerLine


class AccountCategory(str, Enum):
    """Financial statement category of an account type."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"

    @property
    def default_normal_balance(self) -> "NormalBalance":
        if self in (AccountCategory.ASSET, AccountCategory.EXPENSE):
            return NormalBalance.DEBIT
        return NormalBalance.CREDIT

    @property
    def is_temporary(self) -> bool:
        """Revenue and expense accounts are zeroed at year end."""
        return self in (AccountCategory.REVENUE, AccountCategory.EXPENSE)


class NormalBalance(str, Enum):
    """Side on which an account naturally increases."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountTag(str, Enum):
    """Well-known account tags."""

    RETAINED_EARNINGS = "retained_earnings"
    BANK = "bank"


class AccountType(TrackedBase):
    """
    Tenant-defined account type.

    Contract:
        Immutable once any Account references it (the registry refuses
        changes; there is no update path for types).
    """

    __tablename__ = "account_types"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_type_tenant_code"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    category: Mapped[AccountCategory] = mapped_column(
        enum_column(AccountCategory),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        enum_column(NormalBalance, length=10),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<AccountType {self.code}: {self.category.value}/{self.normal_balance.value}>"


class Account(TrackedBase):
    """
    Chart of accounts entry, one node of the tenant's account tree.

    Contract:
        parent_id points to an account of the same tenant; the registry
        guarantees the parent chain is acyclic.  Header accounts aggregate
        their subtree and never receive postings.
    """

    __tablename__ = "accounts"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_account_tenant_code"),
        Index("idx_account_tenant_category", "tenant_id", "category"),
        Index("idx_account_parent", "parent_id"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    account_type_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("account_types.id"),
        nullable=False,
    )

    # Denormalized from the (immutable) account type for aggregate queries
    category: Mapped[AccountCategory] = mapped_column(
        enum_column(AccountCategory),
        nullable=False,
    )

    normal_balance: Mapped[NormalBalance] = mapped_column(
        enum_column(NormalBalance, length=10),
        nullable=False,
    )

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    is_header: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    opening_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    opening_balance_date: Mapped[date | None] = mapped_column(nullable=True)

    # Opening balance plus posted activity, signed per normal_balance
    current_balance: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        default=Decimal("0"),
        nullable=False,
    )

    account_type: Mapped[AccountType] = relationship(lazy="joined")

    ledger_lines: Mapped[list["LedgerLine"]] = relationship(
        back_populates="account",
        lazy="dynamic",
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_postable(self) -> bool:
        return self.is_active and not self.is_header

    def has_tag(self, tag: AccountTag | str) -> bool:
        if self.tags is None:
            return False
        tag_value = tag.value if isinstance(tag, AccountTag) else tag
        return tag_value in self.tags
