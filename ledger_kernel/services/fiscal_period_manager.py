"""
FiscalPeriodManager -- fiscal year/period lifecycle and posting gate.

Responsibility:
    Creates fiscal years with their monthly periods, closes and reopens
    periods in strict chronological (stack) order, resolves the period for
    a posting date and refuses postings into closed periods.

Architecture position:
    Kernel > Services.  Called by LedgerPoster (posting gate) and by
    YearEndCloser (year lock and close marker).

Invariants enforced:
    - Fiscal years of a tenant never overlap; their periods are contiguous.
    - closePeriod requires every earlier period of the year closed; ``force``
      skips only the draft-entry soft check.
    - reopenPeriod requires every later period of the year open and the
      year itself open.
    - Period rows are locked (FOR UPDATE) for transitions and share-locked
      (FOR SHARE) by postings, so a close cannot interleave with a posting
      into the same period.

Failure modes:
    - SequentialCloseViolationError, AlreadyClosedError, UnpostedEntriesError,
      PeriodClosedError, PeriodNotFoundError, FiscalYearNotFoundError,
      PeriodOverlapError, ValidationError.

Audit relevance:
    period_closed / period_reopened are logged with the clock timestamp and
    emitted as domain events.
"""

import calendar
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import FiscalPeriodInfo, FiscalYearInfo
from ledger_kernel.domain.events import PERIOD_CLOSED, PERIOD_REOPENED, DomainEvent, EventBuffer
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import (
    AlreadyClosedError,
    FiscalYearNotFoundError,
    PeriodClosedError,
    PeriodNotFoundError,
    PeriodOverlapError,
    SequentialCloseViolationError,
    UnpostedEntriesError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import FiscalPeriod, FiscalYear, PeriodStatus
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.fiscal_period_manager")

MAX_PERIODS_PER_YEAR = 24


def month_ranges(start_date: date, end_date: date) -> list[tuple[date, date]]:
    """Split [start_date, end_date] at calendar month boundaries."""
    ranges = []
    cursor = start_date
    while cursor <= end_date:
        last_day = calendar.monthrange(cursor.year, cursor.month)[1]
        period_end = min(date(cursor.year, cursor.month, last_day), end_date)
        ranges.append((cursor, period_end))
        cursor = period_end + timedelta(days=1)
    return ranges


class FiscalPeriodManager(BaseService[FiscalPeriod]):
    """Tracks period/year open-closed state and gates postings by date."""

    def __init__(self, session, clock=None, events: EventBuffer | None = None):
        super().__init__(session, clock)
        self._events = events if events is not None else EventBuffer()
        self._ledger = LedgerSelector(session)

    # ------------------------------------------------------------------
    # Creation and lookup
    # ------------------------------------------------------------------

    def create_fiscal_year(
        self,
        tenant_id: str,
        name: str,
        start_date: date,
        end_date: date,
    ) -> FiscalYearInfo:
        """Create a fiscal year and one period per calendar month it spans."""
        require_tenant(tenant_id)
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required", field="name")
        name = name.strip()
        if start_date > end_date:
            raise ValidationError("start_date must not be after end_date", field="start_date")

        ranges = month_ranges(start_date, end_date)
        if len(ranges) > MAX_PERIODS_PER_YEAR:
            raise ValidationError(
                f"fiscal year spans {len(ranges)} months; at most {MAX_PERIODS_PER_YEAR} allowed",
                field="end_date",
            )

        overlapping = self.session.execute(
            select(FiscalYear).where(
                FiscalYear.tenant_id == tenant_id,
                FiscalYear.start_date <= end_date,
                FiscalYear.end_date >= start_date,
            )
        ).scalars().first()
        if overlapping is not None:
            raise PeriodOverlapError(name, overlapping.name)

        existing_name = self.session.execute(
            select(FiscalYear.id).where(FiscalYear.tenant_id == tenant_id, FiscalYear.name == name)
        ).first()
        if existing_name is not None:
            raise ValidationError(f"fiscal year {name!r} already exists", field="name")

        fiscal_year = FiscalYear(
            tenant_id=tenant_id,
            name=name,
            start_date=start_date,
            end_date=end_date,
            status=PeriodStatus.OPEN,
        )
        self.session.add(fiscal_year)
        self.session.flush()

        for number, (period_start, period_end) in enumerate(ranges, start=1):
            self.session.add(
                FiscalPeriod(
                    tenant_id=tenant_id,
                    fiscal_year_id=fiscal_year.id,
                    period_number=number,
                    period_code=f"{name}-{number:02d}",
                    name=period_start.strftime("%b %Y"),
                    start_date=period_start,
                    end_date=period_end,
                    status=PeriodStatus.OPEN,
                )
            )
        self.session.flush()
        self.session.refresh(fiscal_year)

        logger.info(
            "fiscal_year_created",
            extra={
                "fiscal_year_id": str(fiscal_year.id),
                "fiscal_year_name": name,
                "start_date": start_date,
                "end_date": end_date,
                "period_count": len(ranges),
            },
        )
        return FiscalYearInfo.from_model(fiscal_year)

    def get_fiscal_year(self, tenant_id: str, fiscal_year_id: UUID) -> FiscalYearInfo:
        return FiscalYearInfo.from_model(self._get_year(tenant_id, fiscal_year_id))

    def list_fiscal_years(self, tenant_id: str) -> list[FiscalYearInfo]:
        require_tenant(tenant_id)
        years = self.session.execute(
            select(FiscalYear).where(FiscalYear.tenant_id == tenant_id).order_by(FiscalYear.start_date)
        ).scalars()
        return [FiscalYearInfo.from_model(y) for y in years]

    def list_periods(self, tenant_id: str, fiscal_year_id: UUID | None = None) -> list[FiscalPeriodInfo]:
        require_tenant(tenant_id)
        query = select(FiscalPeriod).where(FiscalPeriod.tenant_id == tenant_id)
        if fiscal_year_id is not None:
            query = query.where(FiscalPeriod.fiscal_year_id == fiscal_year_id)
        periods = self.session.execute(query.order_by(FiscalPeriod.start_date)).scalars()
        return [FiscalPeriodInfo.from_model(p) for p in periods]

    def period_for_date(self, tenant_id: str, for_date: date) -> FiscalPeriodInfo:
        require_tenant(tenant_id)
        period = self._find_period_for_date(tenant_id, for_date)
        if period is None:
            raise PeriodNotFoundError(str(for_date))
        return FiscalPeriodInfo.from_model(period)

    def current_period(self, tenant_id: str) -> FiscalPeriodInfo:
        """The period containing the clock's current date."""
        return self.period_for_date(tenant_id, self._clock.today())

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def close_period(self, tenant_id: str, period_id: UUID, force: bool = False) -> FiscalPeriodInfo:
        """
        Close a period.

        Raises:
            AlreadyClosedError: the period is already closed.
            SequentialCloseViolationError: an earlier period is still open.
            UnpostedEntriesError: drafts are dated inside it (unless force).
        """
        period, siblings = self._lock_year_periods(tenant_id, period_id)
        if period.is_closed:
            raise AlreadyClosedError("FiscalPeriod", period.period_code)

        earlier_open = [
            p.period_code for p in siblings if p.period_number < period.period_number and p.is_open
        ]
        if earlier_open:
            raise SequentialCloseViolationError(
                period.period_code, earlier_open, "earlier periods must be closed first"
            )

        drafts = self._ledger.draft_count(tenant_id, period.start_date, period.end_date)
        if drafts and not force:
            raise UnpostedEntriesError(period.period_code, drafts)

        period.status = PeriodStatus.CLOSED
        period.closed_at = self._clock.now()
        self.session.flush()

        logger.info(
            "period_closed",
            extra={
                "period_id": str(period.id),
                "period_code": period.period_code,
                "forced": force,
                "draft_count": drafts,
            },
        )
        self._events.record(
            DomainEvent(
                event_type=PERIOD_CLOSED,
                tenant_id=tenant_id,
                aggregate_id=period.id,
                occurred_at=period.closed_at,
                payload={"period_code": period.period_code},
            )
        )
        return FiscalPeriodInfo.from_model(period)

    def reopen_period(self, tenant_id: str, period_id: UUID) -> FiscalPeriodInfo:
        """
        Reopen the most recently closed period of an open year.

        Raises:
            AlreadyClosedError: the fiscal year is closed.
            SequentialCloseViolationError: a later period is closed.
            ValidationError: the period is already open.
        """
        period, siblings = self._lock_year_periods(tenant_id, period_id)
        if period.fiscal_year.is_closed:
            raise AlreadyClosedError("FiscalYear", period.fiscal_year.name)
        if period.is_open:
            raise ValidationError(f"period {period.period_code} is already open", field="period_id")

        later_closed = [
            p.period_code for p in siblings if p.period_number > period.period_number and p.is_closed
        ]
        if later_closed:
            raise SequentialCloseViolationError(
                period.period_code, later_closed, "later periods must be reopened first"
            )

        period.status = PeriodStatus.OPEN
        period.closed_at = None
        self.session.flush()

        logger.info(
            "period_reopened",
            extra={"period_id": str(period.id), "period_code": period.period_code},
        )
        self._events.record(
            DomainEvent(
                event_type=PERIOD_REOPENED,
                tenant_id=tenant_id,
                aggregate_id=period.id,
                occurred_at=self._clock.now(),
                payload={"period_code": period.period_code},
            )
        )
        return FiscalPeriodInfo.from_model(period)

    # ------------------------------------------------------------------
    # Posting gate and year-end support
    # ------------------------------------------------------------------

    def gate_posting(self, tenant_id: str, entry_date: date, closing_entry: bool = False) -> FiscalPeriod:
        """
        Resolve and share-lock the period for a posting.

        A closing entry may land in a closed period as long as its fiscal
        year is still open; every other posting needs an open period.
        """
        period = self.session.execute(
            select(FiscalPeriod)
            .where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= entry_date,
                FiscalPeriod.end_date >= entry_date,
            )
            .with_for_update(read=True)
        ).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(entry_date))

        if closing_entry:
            if period.fiscal_year.is_closed:
                raise AlreadyClosedError("FiscalYear", period.fiscal_year.name)
            return period

        if period.is_closed:
            logger.warning(
                "posting_rejected_closed_period",
                extra={"period_code": period.period_code, "entry_date": entry_date},
            )
            raise PeriodClosedError(period.period_code, str(entry_date))
        return period

    def lock_fiscal_year(self, tenant_id: str, fiscal_year_id: UUID) -> FiscalYear:
        require_tenant(tenant_id)
        fiscal_year = self.session.execute(
            select(FiscalYear)
            .where(FiscalYear.id == fiscal_year_id, FiscalYear.tenant_id == tenant_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def mark_year_closed(self, fiscal_year: FiscalYear, closing_entry_id: UUID | None) -> FiscalYear:
        fiscal_year.status = PeriodStatus.CLOSED
        fiscal_year.closed_at = self._clock.now()
        fiscal_year.closing_entry_id = closing_entry_id
        self.session.flush()
        return fiscal_year

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _get_year(self, tenant_id: str, fiscal_year_id: UUID) -> FiscalYear:
        require_tenant(tenant_id)
        fiscal_year = self.session.execute(
            select(FiscalYear).where(FiscalYear.id == fiscal_year_id, FiscalYear.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if fiscal_year is None:
            raise FiscalYearNotFoundError(str(fiscal_year_id))
        return fiscal_year

    def _find_period_for_date(self, tenant_id: str, for_date: date) -> FiscalPeriod | None:
        return self.session.execute(
            select(FiscalPeriod).where(
                FiscalPeriod.tenant_id == tenant_id,
                FiscalPeriod.start_date <= for_date,
                FiscalPeriod.end_date >= for_date,
            )
        ).scalar_one_or_none()

    def _lock_year_periods(self, tenant_id: str, period_id: UUID) -> tuple[FiscalPeriod, list[FiscalPeriod]]:
        """Lock every period of the target's year in period order."""
        require_tenant(tenant_id)
        target = self.session.execute(
            select(FiscalPeriod).where(FiscalPeriod.id == period_id, FiscalPeriod.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if target is None:
            raise PeriodNotFoundError(str(period_id))

        siblings = list(
            self.session.execute(
                select(FiscalPeriod)
                .where(FiscalPeriod.fiscal_year_id == target.fiscal_year_id)
                .order_by(FiscalPeriod.period_number)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )
        period = next(p for p in siblings if p.id == target.id)
        return period, siblings
