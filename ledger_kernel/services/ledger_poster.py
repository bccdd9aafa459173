"""
LedgerPoster -- the single writer of journal entries and ledger lines.

Responsibility:
    Validates a proposed entry, writes it with its lines, assigns the entry
    number and updates every touched account's running balance, all inside
    the caller's transaction.  Also owns drafts, reversals and the closing
    entry used by YearEndCloser.

Architecture position:
    Kernel > Services.  Uses FiscalPeriodManager as the posting gate and
    SequenceService for entry numbers.  No other component inserts
    LedgerLine rows or writes Account.current_balance.

Invariants enforced:
    - A posted entry has >= 2 lines, each with exactly one positive side,
      and sum(debits) == sum(credits) exactly (Decimal arithmetic).
    - Every line's account exists in the tenant, is active and postable.
    - The period containing the entry date is open (closing entries may
      use the closed last period of an open year).
    - Validation completes before the first write, so a rejected entry
      leaves no trace; writes share one transaction with the balance
      updates.
    - Account rows are locked FOR UPDATE in ascending id order before their
      balances move, so concurrent postings cannot deadlock or lose updates.
    - An entry is reversed at most once; the original is never modified.

Failure modes:
    - ValidationError: malformed lines or amounts.
    - ImbalancedEntryError: debits != credits.
    - UnknownAccountError: account missing, in another tenant, or inactive.
    - HeaderAccountNotPostableError: a line targets a header account.
    - PeriodClosedError / PeriodNotFoundError: posting gate.
    - EntryNotFoundError / AlreadyReversedError: drafts and reversals.

Audit relevance:
    entry_posted / entry_reversed are logged with entry number, totals and
    line count; ledger.entry.posted events are recorded for publication
    after commit.
"""

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, parse_amount, round_money
from ledger_kernel.domain.dtos import JournalEntryInfo, LineSpec
from ledger_kernel.domain.events import ENTRY_POSTED, ENTRY_REVERSED, DomainEvent, EventBuffer
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import (
    AlreadyReversedError,
    EntryNotFoundError,
    HeaderAccountNotPostableError,
    ImbalancedEntryError,
    UnknownAccountError,
    ValidationError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.cost_center import CostCenter
from ledger_kernel.models.journal import (
    EntryType,
    JournalEntry,
    JournalEntryStatus,
    LedgerLine,
    LineSide,
)
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.fiscal_period_manager import FiscalPeriodManager
from ledger_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger_poster")

MIN_LINES = 2
DEFAULT_ENTRY_PREFIX = "JE"


@dataclass(frozen=True)
class _ShapedLine:
    """A line that passed shape validation (one positive side)."""

    account_id: UUID
    side: LineSide
    amount: Decimal
    memo: str | None
    cost_center_code: str | None


def _shape_lines(lines: Sequence[LineSpec]) -> list[_ShapedLine]:
    """
    Structural validation: line count, amounts, one side per line, balance.

    Raises ValidationError or ImbalancedEntryError.
    """
    if lines is None or len(lines) < MIN_LINES:
        raise ValidationError(f"an entry needs at least {MIN_LINES} lines", field="lines")

    shaped = []
    for index, spec in enumerate(lines):
        if not isinstance(spec, LineSpec):
            raise ValidationError(f"line {index} is not a LineSpec", field="lines")
        if spec.account_id is None:
            raise ValidationError(f"line {index} has no account", field="account_id")
        debit = parse_amount(spec.debit, field=f"lines[{index}].debit")
        credit = parse_amount(spec.credit, field=f"lines[{index}].credit")
        if debit < ZERO or credit < ZERO:
            raise ValidationError(f"line {index} has a negative amount", field="amount")
        if (debit == ZERO) == (credit == ZERO):
            raise ValidationError(
                f"line {index} must carry exactly one non-zero debit or credit",
                field="amount",
            )
        side = LineSide.DEBIT if debit != ZERO else LineSide.CREDIT
        shaped.append(
            _ShapedLine(
                account_id=spec.account_id,
                side=side,
                amount=debit if side == LineSide.DEBIT else credit,
                memo=spec.memo,
                cost_center_code=spec.cost_center_code,
            )
        )

    debits = sum((s.amount for s in shaped if s.side == LineSide.DEBIT), ZERO)
    credits = sum((s.amount for s in shaped if s.side == LineSide.CREDIT), ZERO)
    if debits != credits:
        raise ImbalancedEntryError(str(debits), str(credits))
    return shaped


def _mirror(line: LedgerLine) -> LineSpec:
    cost_center_code = line.cost_center.code if line.cost_center is not None else None
    if line.is_debit:
        return LineSpec.credit_line(line.account_id, line.amount, memo=line.memo, cost_center_code=cost_center_code)
    return LineSpec.debit_line(line.account_id, line.amount, memo=line.memo, cost_center_code=cost_center_code)


class LedgerPoster(BaseService[JournalEntry]):
    """Validates and records journal entries."""

    def __init__(
        self,
        session,
        clock=None,
        events: EventBuffer | None = None,
        periods: FiscalPeriodManager | None = None,
        entry_number_prefix: str = DEFAULT_ENTRY_PREFIX,
    ):
        super().__init__(session, clock)
        self._events = events if events is not None else EventBuffer()
        self._periods = periods or FiscalPeriodManager(session, clock, self._events)
        self._sequences = SequenceService(session)
        self._prefix = entry_number_prefix

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        reference: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> JournalEntryInfo:
        """
        Validate and post a balanced entry.

        With an ``idempotency_key`` already used by a posted entry of the
        tenant, that entry is returned and nothing is written.
        """
        require_tenant(tenant_id)
        if idempotency_key is not None:
            existing = self._find_by_idempotency_key(tenant_id, idempotency_key)
            if existing is not None:
                if not existing.is_posted:
                    raise ValidationError(
                        "idempotency key belongs to an unposted draft", field="idempotency_key"
                    )
                logger.info(
                    "entry_idempotent_replay",
                    extra={"entry_id": str(existing.id), "entry_number": existing.entry_number},
                )
                return JournalEntryInfo.from_model(existing)

        entry = self._post_new(
            tenant_id,
            entry_date,
            lines,
            reference=reference,
            description=description,
            idempotency_key=idempotency_key,
            entry_type=EntryType.STANDARD,
        )
        return JournalEntryInfo.from_model(entry)

    def post_closing_entry(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        description: str | None = None,
        reference: str | None = None,
    ) -> JournalEntry:
        """Post a year-end closing entry; the period gate accepts a closed period of an open year."""
        require_tenant(tenant_id)
        return self._post_new(
            tenant_id,
            entry_date,
            lines,
            reference=reference,
            description=description,
            idempotency_key=None,
            entry_type=EntryType.CLOSING,
            closing_entry=True,
        )

    # ------------------------------------------------------------------
    # Drafts
    # ------------------------------------------------------------------

    def save_draft(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        reference: str | None = None,
        description: str | None = None,
        idempotency_key: str | None = None,
    ) -> JournalEntryInfo:
        """Store an unposted entry.  Only its shape and cost centers are validated."""
        require_tenant(tenant_id)
        shaped = _shape_lines(lines)
        cost_centers = self._resolve_cost_centers(tenant_id, shaped)
        if idempotency_key is not None and self._find_by_idempotency_key(tenant_id, idempotency_key):
            raise ValidationError("idempotency key already used", field="idempotency_key")

        entry = JournalEntry(
            tenant_id=tenant_id,
            entry_number=f"DRAFT-{uuid4().hex[:12].upper()}",
            seq=0,
            entry_date=entry_date,
            reference=reference,
            description=description,
            entry_type=EntryType.STANDARD,
            status=JournalEntryStatus.DRAFT,
            idempotency_key=idempotency_key,
        )
        self.session.add(entry)
        self.session.flush()
        for line_seq, line in enumerate(shaped):
            self.session.add(
                LedgerLine(
                    tenant_id=tenant_id,
                    journal_entry_id=entry.id,
                    account_id=line.account_id,
                    side=line.side,
                    amount=line.amount,
                    memo=line.memo,
                    cost_center_id=cost_centers[line.cost_center_code].id if line.cost_center_code else None,
                    line_seq=line_seq,
                )
            )
        self.session.flush()
        self.session.refresh(entry)

        logger.info(
            "draft_saved",
            extra={"entry_id": str(entry.id), "entry_date": entry_date, "line_count": len(shaped)},
        )
        return JournalEntryInfo.from_model(entry)

    def post_draft(self, tenant_id: str, entry_id: UUID) -> JournalEntryInfo:
        """Run full validation on a draft and post it in place."""
        entry = self._load_entry(tenant_id, entry_id, for_update=True)
        if entry.is_posted:
            raise ValidationError(f"entry {entry.entry_number} is already posted", field="entry_id")

        specs = [
            LineSpec(
                account_id=line.account_id,
                debit=line.amount if line.is_debit else ZERO,
                credit=ZERO if line.is_debit else line.amount,
                memo=line.memo,
                cost_center_code=line.cost_center.code if line.cost_center is not None else None,
            )
            for line in entry.lines
        ]
        shaped = _shape_lines(specs)
        self._validate_accounts(tenant_id, shaped)
        self._periods.gate_posting(tenant_id, entry.entry_date)

        self._apply_balances(tenant_id, shaped)
        self._finalize(entry)
        return JournalEntryInfo.from_model(entry)

    def discard_draft(self, tenant_id: str, entry_id: UUID) -> None:
        entry = self._load_entry(tenant_id, entry_id, for_update=True)
        if entry.is_posted:
            raise ValidationError(
                f"entry {entry.entry_number} is posted; reverse it instead", field="entry_id"
            )
        self.session.delete(entry)
        self.session.flush()
        logger.info("draft_discarded", extra={"entry_id": str(entry_id)})

    # ------------------------------------------------------------------
    # Reversal
    # ------------------------------------------------------------------

    def reverse(
        self,
        tenant_id: str,
        entry_id: UUID,
        reversal_date: date | None = None,
        description: str | None = None,
    ) -> JournalEntryInfo:
        """
        Post the mirror image of a posted entry.

        The original stays untouched; the reversal references it through
        ``reversal_of_id``.  The reversal date must fall in an open period.
        """
        original = self._load_entry(tenant_id, entry_id, for_update=True)
        if not original.is_posted:
            raise ValidationError("only posted entries can be reversed", field="entry_id")

        existing = self.session.execute(
            select(JournalEntry.id).where(JournalEntry.reversal_of_id == original.id)
        ).scalar_one_or_none()
        if existing is not None:
            raise AlreadyReversedError(str(original.id), str(existing))

        reversal = self._post_new(
            tenant_id,
            reversal_date or self._clock.today(),
            [_mirror(line) for line in original.lines],
            reference=original.reference,
            description=description or f"Reversal of {original.entry_number}",
            idempotency_key=None,
            entry_type=EntryType.REVERSAL,
            reversal_of_id=original.id,
        )

        logger.info(
            "entry_reversed",
            extra={
                "entry_id": str(reversal.id),
                "reversed_entry_id": str(original.id),
                "entry_number": reversal.entry_number,
            },
        )
        self._events.record(
            DomainEvent(
                event_type=ENTRY_REVERSED,
                tenant_id=tenant_id,
                aggregate_id=original.id,
                occurred_at=reversal.posted_at,
                payload={
                    "reversal_entry_id": str(reversal.id),
                    "reversal_entry_number": reversal.entry_number,
                },
            )
        )
        return JournalEntryInfo.from_model(reversal)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_entry(self, tenant_id: str, entry_id: UUID) -> JournalEntryInfo:
        return JournalEntryInfo.from_model(self._load_entry(tenant_id, entry_id))

    def list_entries(
        self,
        tenant_id: str,
        from_date: date | None = None,
        to_date: date | None = None,
        status: JournalEntryStatus | None = None,
    ) -> list[JournalEntryInfo]:
        require_tenant(tenant_id)
        query = select(JournalEntry).where(JournalEntry.tenant_id == tenant_id)
        if from_date is not None:
            query = query.where(JournalEntry.entry_date >= from_date)
        if to_date is not None:
            query = query.where(JournalEntry.entry_date <= to_date)
        if status is not None:
            query = query.where(JournalEntry.status == status)
        query = query.order_by(JournalEntry.entry_date, JournalEntry.seq, JournalEntry.created_at)
        return [JournalEntryInfo.from_model(e) for e in self.session.execute(query).scalars()]

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _post_new(
        self,
        tenant_id: str,
        entry_date: date,
        lines: Sequence[LineSpec],
        *,
        reference: str | None,
        description: str | None,
        idempotency_key: str | None,
        entry_type: EntryType,
        reversal_of_id: UUID | None = None,
        closing_entry: bool = False,
    ) -> JournalEntry:
        if not isinstance(entry_date, date):
            raise ValidationError("entry_date must be a date", field="entry_date")

        shaped = _shape_lines(lines)
        cost_centers = self._validate_accounts(tenant_id, shaped)
        self._periods.gate_posting(tenant_id, entry_date, closing_entry=closing_entry)

        entry = JournalEntry(
            tenant_id=tenant_id,
            entry_number=f"PENDING-{uuid4().hex[:12].upper()}",
            seq=0,
            entry_date=entry_date,
            reference=reference,
            description=description,
            entry_type=entry_type,
            status=JournalEntryStatus.DRAFT,
            idempotency_key=idempotency_key,
            reversal_of_id=reversal_of_id,
        )
        self.session.add(entry)
        self.session.flush()

        for line_seq, line in enumerate(shaped):
            cost_center = cost_centers.get(line.cost_center_code) if line.cost_center_code else None
            self.session.add(
                LedgerLine(
                    tenant_id=tenant_id,
                    journal_entry_id=entry.id,
                    account_id=line.account_id,
                    side=line.side,
                    amount=line.amount,
                    memo=line.memo,
                    cost_center_id=cost_center.id if cost_center is not None else None,
                    line_seq=line_seq,
                )
            )
        self.session.flush()
        self.session.refresh(entry)

        self._apply_balances(tenant_id, shaped)
        self._finalize(entry)
        return entry

    def _finalize(self, entry: JournalEntry) -> None:
        """Assign the entry number and flip the entry to POSTED."""
        seq = self._sequences.next_value(SequenceService.journal_sequence_name(entry.tenant_id))
        entry.seq = seq
        entry.entry_number = f"{self._prefix}-{seq:06d}"
        entry.status = JournalEntryStatus.POSTED
        entry.posted_at = self._clock.now()
        self.session.flush()

        total = round_money(entry.total_debits)
        with LogContext.bind(entry_id=entry.id):
            logger.info(
                "entry_posted",
                extra={
                    "entry_number": entry.entry_number,
                    "entry_date": entry.entry_date,
                    "entry_type": entry.entry_type.value,
                    "line_count": len(entry.lines),
                    "total": total,
                },
            )
        self._events.record(
            DomainEvent(
                event_type=ENTRY_POSTED,
                tenant_id=entry.tenant_id,
                aggregate_id=entry.id,
                occurred_at=entry.posted_at,
                payload={
                    "entry_number": entry.entry_number,
                    "entry_date": entry.entry_date.isoformat(),
                    "entry_type": entry.entry_type.value,
                    "total": str(total),
                },
            )
        )

    def _validate_accounts(self, tenant_id: str, shaped: list[_ShapedLine]) -> dict[str, CostCenter]:
        """Accounts exist in the tenant, are active and postable; cost centers are active."""
        account_ids = {line.account_id for line in shaped}
        accounts = {
            a.id: a
            for a in self.session.execute(
                select(Account).where(Account.tenant_id == tenant_id, Account.id.in_(account_ids))
            ).scalars()
        }
        for line in shaped:
            account = accounts.get(line.account_id)
            if account is None:
                raise UnknownAccountError(str(line.account_id), tenant_id)
            if not account.is_active:
                raise UnknownAccountError(f"{account.code} (inactive)", tenant_id)
            if account.is_header:
                raise HeaderAccountNotPostableError(str(account.id), account.code)

        return self._resolve_cost_centers(tenant_id, shaped)

    def _resolve_cost_centers(self, tenant_id: str, shaped: list[_ShapedLine]) -> dict[str, CostCenter]:
        codes = {line.cost_center_code for line in shaped if line.cost_center_code}
        if not codes:
            return {}
        cost_centers = {
            c.code: c
            for c in self.session.execute(
                select(CostCenter).where(CostCenter.tenant_id == tenant_id, CostCenter.code.in_(codes))
            ).scalars()
        }
        for code in codes:
            cost_center = cost_centers.get(code)
            if cost_center is None or not cost_center.is_active:
                raise ValidationError(f"unknown or inactive cost center: {code!r}", field="cost_center_code")
        return cost_centers

    def _apply_balances(self, tenant_id: str, shaped: list[_ShapedLine]) -> None:
        """Lock touched accounts in id order and move their running balances."""
        net_debit: dict[UUID, Decimal] = defaultdict(lambda: ZERO)
        for line in shaped:
            net_debit[line.account_id] += line.amount if line.side == LineSide.DEBIT else -line.amount

        locked = self.session.execute(
            select(Account)
            .where(Account.tenant_id == tenant_id, Account.id.in_(sorted(net_debit, key=str)))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        # re-checked under the lock; a concurrent deactivate may have won
        for account in locked:
            if not account.is_active:
                raise UnknownAccountError(f"{account.code} (inactive)", tenant_id)
            if account.is_header:
                raise HeaderAccountNotPostableError(str(account.id), account.code)
        for account in locked:
            delta = net_debit[account.id]
            account.current_balance = account.current_balance + (delta if account.is_debit_normal else -delta)
        self.session.flush()

    def _load_entry(self, tenant_id: str, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        require_tenant(tenant_id)
        query = select(JournalEntry).where(JournalEntry.id == entry_id, JournalEntry.tenant_id == tenant_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        entry = self.session.execute(query).scalar_one_or_none()
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    def _find_by_idempotency_key(self, tenant_id: str, key: str) -> JournalEntry | None:
        return self.session.execute(
            select(JournalEntry).where(
                JournalEntry.tenant_id == tenant_id,
                JournalEntry.idempotency_key == key,
            )
        ).scalar_one_or_none()
