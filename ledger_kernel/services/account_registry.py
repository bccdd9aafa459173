"""
AccountRegistry -- chart-of-accounts hierarchy and account-type taxonomy.

Responsibility:
    Creates and maintains account types and accounts for a tenant, computes
    point-in-time balances (including header-account subtree roll-ups) and
    performs soft deletion.

Architecture position:
    Kernel > Services.  Uses LedgerSelector for posted totals; never writes
    ledger lines.  LedgerPoster is the only writer of current_balance after
    creation.

Invariants enforced:
    - (tenant_id, code) unique for types and accounts -> DuplicateCodeError.
    - Parent chains are acyclic and never cross tenants -> CycleError.
    - Account types are immutable once referenced (no update path exists).
    - Partial updates go through AccountUpdate and one validated merge.
    - Deactivation requires a zero balance and no active descendants.

Failure modes:
    - ValidationError for malformed codes, names, amounts, unknown types.
    - UnknownAccountError for ids outside the tenant.
    - AccountInUseError when deactivation would orphan a balance.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, parse_amount, round_money
from ledger_kernel.domain.dtos import (
    AccountBalanceInfo,
    AccountInfo,
    AccountTypeInfo,
    AccountUpdate,
)
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import (
    AccountInUseError,
    CycleError,
    DuplicateCodeError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountCategory, AccountType, NormalBalance
from ledger_kernel.models.fiscal_period import FiscalYear, PeriodStatus
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.trial_balance import opening_applies, signed_balance
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account_registry")

MAX_CODE_LENGTH = 50
MAX_NAME_LENGTH = 255

DEFAULT_ACCOUNT_TYPES: tuple[tuple[str, str, AccountCategory], ...] = (
    ("ASSET", "Assets", AccountCategory.ASSET),
    ("LIABILITY", "Liabilities", AccountCategory.LIABILITY),
    ("EQUITY", "Equity", AccountCategory.EQUITY),
    ("REVENUE", "Revenue", AccountCategory.REVENUE),
    ("EXPENSE", "Expenses", AccountCategory.EXPENSE),
)


def _validate_code(code: str, field: str = "code") -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError(f"{field} is required", field=field)
    code = code.strip()
    if len(code) > MAX_CODE_LENGTH:
        raise ValidationError(f"{field} longer than {MAX_CODE_LENGTH} characters", field=field)
    return code


def _validate_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("name is required", field="name")
    name = name.strip()
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"name longer than {MAX_NAME_LENGTH} characters", field="name")
    return name


def _coerce_enum(enum_cls, value, field: str):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        raise ValidationError(f"invalid {field}: {value!r}", field=field) from None


class AccountRegistry(BaseService[Account]):
    """Owns the chart of accounts for every tenant."""

    def __init__(self, session, clock=None):
        super().__init__(session, clock)
        self._ledger = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Account types
    # ------------------------------------------------------------------

    def create_account_type(
        self,
        tenant_id: str,
        code: str,
        name: str,
        category: AccountCategory | str,
        normal_balance: NormalBalance | str | None = None,
    ) -> AccountTypeInfo:
        require_tenant(tenant_id)
        code = _validate_code(code)
        name = _validate_name(name)
        category = _coerce_enum(AccountCategory, category, "category")
        normal_balance = (
            _coerce_enum(NormalBalance, normal_balance, "normal_balance")
            if normal_balance is not None
            else category.default_normal_balance
        )

        if self._find_type(tenant_id, code) is not None:
            raise DuplicateCodeError("AccountType", code, tenant_id)

        account_type = AccountType(
            tenant_id=tenant_id,
            code=code,
            name=name,
            category=category,
            normal_balance=normal_balance,
        )
        self.session.add(account_type)
        self.session.flush()

        logger.info(
            "account_type_created",
            extra={"code": code, "category": category.value, "normal_balance": normal_balance.value},
        )
        return AccountTypeInfo.from_model(account_type)

    def seed_default_account_types(self, tenant_id: str) -> list[AccountTypeInfo]:
        """Install one type per category; existing codes are left untouched."""
        require_tenant(tenant_id)
        seeded = []
        for code, name, category in DEFAULT_ACCOUNT_TYPES:
            existing = self._find_type(tenant_id, code)
            if existing is not None:
                seeded.append(AccountTypeInfo.from_model(existing))
            else:
                seeded.append(self.create_account_type(tenant_id, code, name, category))
        return seeded

    def get_account_types(self, tenant_id: str) -> list[AccountTypeInfo]:
        require_tenant(tenant_id)
        types = self.session.execute(
            select(AccountType).where(AccountType.tenant_id == tenant_id).order_by(AccountType.code)
        ).scalars()
        return [AccountTypeInfo.from_model(t) for t in types]

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def create_account(
        self,
        tenant_id: str,
        code: str,
        name: str,
        account_type_code: str,
        parent_id: UUID | None = None,
        is_header: bool = False,
        opening_balance: Decimal | int | str = ZERO,
        opening_balance_date: date | None = None,
        description: str | None = None,
        tags: tuple[str, ...] | list[str] | None = None,
    ) -> AccountInfo:
        """
        Create an account under an optional parent.

        Raises:
            DuplicateCodeError: (tenant_id, code) already exists.
            CycleError: parent belongs to another tenant.
            UnknownAccountError: parent id does not exist.
            ValidationError: malformed input or unknown account type.
        """
        require_tenant(tenant_id)
        code = _validate_code(code)
        name = _validate_name(name)
        opening = parse_amount(opening_balance, field="opening_balance")
        if is_header and opening != ZERO:
            raise ValidationError("header accounts cannot carry an opening balance", field="opening_balance")

        account_type = self._find_type(tenant_id, _validate_code(account_type_code, "account_type_code"))
        if account_type is None:
            raise ValidationError(f"unknown account type: {account_type_code!r}", field="account_type_code")

        if self._find_by_code(tenant_id, code) is not None:
            raise DuplicateCodeError("Account", code, tenant_id)

        if parent_id is not None:
            self._validate_parent(tenant_id, code, parent_id, account_id=None)

        account = Account(
            tenant_id=tenant_id,
            code=code,
            name=name,
            description=description,
            account_type_id=account_type.id,
            account_type=account_type,
            category=account_type.category,
            normal_balance=account_type.normal_balance,
            parent_id=parent_id,
            is_header=is_header,
            is_active=True,
            tags=list(tags) if tags else None,
            opening_balance=opening,
            opening_balance_date=opening_balance_date,
            current_balance=opening,
        )
        self.session.add(account)
        self.session.flush()

        logger.info(
            "account_created",
            extra={
                "account_id": str(account.id),
                "code": code,
                "category": account.category.value,
                "is_header": is_header,
                "opening_balance": opening,
            },
        )
        return AccountInfo.from_model(account)

    def get_account(self, tenant_id: str, account_id: UUID) -> AccountInfo:
        return AccountInfo.from_model(self.load_account(tenant_id, account_id))

    def get_account_by_code(self, tenant_id: str, code: str) -> AccountInfo:
        require_tenant(tenant_id)
        account = self._find_by_code(tenant_id, code)
        if account is None:
            raise UnknownAccountError(code, tenant_id)
        return AccountInfo.from_model(account)

    def get_accounts(
        self,
        tenant_id: str,
        category: AccountCategory | str | None = None,
        active_only: bool = False,
    ) -> list[AccountInfo]:
        require_tenant(tenant_id)
        query = select(Account).where(Account.tenant_id == tenant_id)
        if category is not None:
            query = query.where(Account.category == _coerce_enum(AccountCategory, category, "category"))
        if active_only:
            query = query.where(Account.is_active.is_(True))
        return [AccountInfo.from_model(a) for a in self.session.execute(query.order_by(Account.code)).scalars()]

    def get_children(self, tenant_id: str, account_id: UUID) -> list[AccountInfo]:
        parent = self.load_account(tenant_id, account_id)
        children = self.session.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.parent_id == parent.id)
            .order_by(Account.code)
        ).scalars()
        return [AccountInfo.from_model(a) for a in children]

    def update_account(self, tenant_id: str, account_id: UUID, update: AccountUpdate) -> AccountInfo:
        """Apply an AccountUpdate as one validated merge."""
        account = self.load_account(tenant_id, account_id)
        if update.is_empty:
            return AccountInfo.from_model(account)
        if update.clear_parent and update.parent_id is not None:
            raise ValidationError("parent_id and clear_parent are mutually exclusive", field="parent_id")

        changes: dict[str, object] = {}
        if update.name is not None:
            changes["name"] = _validate_name(update.name)
        if update.description is not None:
            changes["description"] = update.description
        if update.tags is not None:
            changes["tags"] = list(update.tags) or None
        if update.clear_parent:
            changes["parent_id"] = None
        elif update.parent_id is not None:
            self._validate_parent(tenant_id, account.code, update.parent_id, account_id=account.id)
            changes["parent_id"] = update.parent_id

        for attr, value in changes.items():
            setattr(account, attr, value)
        self.session.flush()

        logger.info(
            "account_updated",
            extra={"account_id": str(account.id), "fields": sorted(changes)},
        )
        return AccountInfo.from_model(account)

    def compute_balance(self, tenant_id: str, account_id: UUID, as_of_date: date) -> AccountBalanceInfo:
        """
        Opening balance plus signed posted activity dated on or before
        ``as_of_date``.  Header accounts roll up their whole subtree,
        re-expressed on the header's own normal side.
        """
        account = self.load_account(tenant_id, account_id)
        members = self._subtree(tenant_id, account) if account.is_header else [account]
        totals = self._ledger.account_totals(
            tenant_id, as_of_date=as_of_date, account_ids=[m.id for m in members]
        )

        # Accumulate debit-positive, then re-sign for the reporting account
        opening_net_debit = ZERO
        debit_total = ZERO
        credit_total = ZERO
        for member in members:
            if opening_applies(member, as_of_date):
                opening = round_money(member.opening_balance)
                opening_net_debit += opening if member.is_debit_normal else -opening
            member_totals = totals.get(member.id)
            if member_totals is not None:
                debit_total += member_totals.debit_total
                credit_total += member_totals.credit_total

        opening_balance = opening_net_debit if account.is_debit_normal else -opening_net_debit
        balance = opening_balance + signed_balance(account.normal_balance, debit_total, credit_total)

        return AccountBalanceInfo(
            account_id=account.id,
            account_code=account.code,
            as_of_date=as_of_date,
            opening_balance=opening_balance,
            debit_total=debit_total,
            credit_total=credit_total,
            balance=balance,
            normal_balance=account.normal_balance.value,
            includes_subtree=account.is_header,
        )

    def deactivate(self, tenant_id: str, account_id: UUID) -> AccountInfo:
        """
        Soft-delete an account.

        Raises:
            AccountInUseError: non-zero balance, an active descendant, or a
                revenue/expense balance left in an open fiscal year.
        """
        account = self.load_account(tenant_id, account_id, for_update=True)
        if not account.is_active:
            return AccountInfo.from_model(account)

        active_descendants = [
            a.code for a in self._subtree(tenant_id, account) if a.id != account.id and a.is_active
        ]
        if active_descendants:
            raise AccountInUseError(
                str(account.id),
                f"active descendant accounts: {', '.join(sorted(active_descendants))}",
            )

        totals = self._ledger.account_totals(tenant_id, account_ids=[account.id]).get(account.id)
        balance = round_money(account.opening_balance)
        if totals is not None:
            balance += signed_balance(account.normal_balance, totals.debit_total, totals.credit_total)
        if balance != ZERO:
            raise AccountInUseError(str(account.id), f"non-zero balance {balance}")
        if account.category.is_temporary:
            self._require_closed_out(tenant_id, account)

        account.is_active = False
        self.session.flush()

        logger.info("account_deactivated", extra={"account_id": str(account.id), "code": account.code})
        return AccountInfo.from_model(account)

    # ------------------------------------------------------------------
    # Internal helpers (also used by LedgerPoster and the bank services)
    # ------------------------------------------------------------------

    def load_account(self, tenant_id: str, account_id: UUID, for_update: bool = False) -> Account:
        require_tenant(tenant_id)
        query = select(Account).where(Account.id == account_id, Account.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        account = self.session.execute(query).scalar_one_or_none()
        if account is None:
            raise UnknownAccountError(str(account_id), tenant_id)
        return account

    def _require_closed_out(self, tenant_id: str, account: Account) -> None:
        """A revenue or expense account must be zero at the end of every open fiscal year."""
        open_years = self.session.execute(
            select(FiscalYear)
            .where(FiscalYear.tenant_id == tenant_id, FiscalYear.status == PeriodStatus.OPEN)
            .order_by(FiscalYear.start_date)
        ).scalars()
        for fiscal_year in open_years:
            totals = self._ledger.account_totals(
                tenant_id, as_of_date=fiscal_year.end_date, account_ids=[account.id]
            ).get(account.id)
            balance = round_money(account.opening_balance) if opening_applies(account, fiscal_year.end_date) else ZERO
            if totals is not None:
                balance += signed_balance(account.normal_balance, totals.debit_total, totals.credit_total)
            if balance != ZERO:
                raise AccountInUseError(
                    str(account.id), f"balance {balance} at the end of open fiscal year {fiscal_year.name}"
                )

    def _find_type(self, tenant_id: str, code: str) -> AccountType | None:
        return self.session.execute(
            select(AccountType).where(AccountType.tenant_id == tenant_id, AccountType.code == code)
        ).scalar_one_or_none()

    def _find_by_code(self, tenant_id: str, code: str) -> Account | None:
        return self.session.execute(
            select(Account).where(Account.tenant_id == tenant_id, Account.code == code)
        ).scalar_one_or_none()

    def _validate_parent(
        self,
        tenant_id: str,
        account_ref: str,
        parent_id: UUID,
        account_id: UUID | None,
    ) -> None:
        parent = self.session.get(Account, parent_id)
        if parent is None:
            raise UnknownAccountError(str(parent_id), tenant_id)
        if parent.tenant_id != tenant_id:
            raise CycleError(account_ref, str(parent_id), "parent belongs to a different tenant")
        if account_id is None:
            return

        # Walk up from the proposed parent; meeting the account means a cycle
        seen: set[UUID] = set()
        node = parent
        while node is not None:
            if node.id == account_id:
                raise CycleError(account_ref, str(parent_id), "parent is the account or one of its descendants")
            if node.id in seen:
                raise CycleError(account_ref, str(parent_id), "existing parent chain is cyclic")
            seen.add(node.id)
            node = self.session.get(Account, node.parent_id) if node.parent_id is not None else None

    def _subtree(self, tenant_id: str, root: Account) -> list[Account]:
        """The root and all its descendants, breadth first."""
        accounts = self.session.execute(
            select(Account).where(Account.tenant_id == tenant_id)
        ).scalars().all()
        children: dict[UUID, list[Account]] = defaultdict(list)
        for account in accounts:
            if account.parent_id is not None:
                children[account.parent_id].append(account)

        result = [root]
        visited = {root.id}
        index = 0
        while index < len(result):
            for child in children.get(result[index].id, ()):
                if child.id not in visited:
                    visited.add(child.id)
                    result.append(child)
            index += 1
        return result
