"""
Module: ledger_kernel.models.fiscal_period
Responsibility: ORM persistence for fiscal years and their periods.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - (tenant_id, name) unique per fiscal year; (fiscal_year_id, period_number)
      unique per period.
    - Periods of a year are contiguous, non-overlapping and numbered in date
      order.  FiscalPeriodManager closes them in that order.
    - closing_entry_id, once set, references the single year-end closing entry.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString, enum_column


class PeriodStatus(str, Enum):
    OPEN = "open"
    CLOSED = "closed"


class FiscalYear(TrackedBase):
    """A tenant's fiscal year, the unit of year-end closing."""

    __tablename__ = "fiscal_years"

    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_fiscal_year_tenant_name"),
        Index("idx_fiscal_year_tenant_dates", "tenant_id", "start_date", "end_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    name: Mapped[str] = mapped_column(String(50), nullable=False)

    start_date: Mapped[date] = mapped_column(nullable=False)

    end_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        enum_column(PeriodStatus, length=10),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    closing_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    periods: Mapped[list["FiscalPeriod"]] = relationship(
        back_populates="fiscal_year",
        order_by="FiscalPeriod.period_number",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<FiscalYear {self.name} [{self.status.value}]>"

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED


class FiscalPeriod(TrackedBase):
    """
    A postable date range inside a fiscal year.

    Contract:
        LedgerPoster admits postings dated inside an OPEN period only.
    """

    __tablename__ = "fiscal_periods"

    __table_args__ = (
        UniqueConstraint("fiscal_year_id", "period_number", name="uq_period_year_number"),
        UniqueConstraint("tenant_id", "period_code", name="uq_period_tenant_code"),
        Index("idx_period_tenant_dates", "tenant_id", "start_date", "end_date"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    fiscal_year_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("fiscal_years.id"),
        nullable=False,
    )

    period_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # e.g. "FY2024-03"
    period_code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    start_date: Mapped[date] = mapped_column(nullable=False)

    end_date: Mapped[date] = mapped_column(nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        enum_column(PeriodStatus, length=10),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    fiscal_year: Mapped[FiscalYear] = relationship(back_populates="periods")

    def __repr__(self) -> str:
        return f"<FiscalPeriod {self.period_code} [{self.status.value}]>"

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        return self.status == PeriodStatus.CLOSED

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date
