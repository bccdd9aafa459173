"""Cost center dimension attached to ledger lines for reporting."""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase


class CostCenter(TrackedBase):
    """
    Reporting dimension for ledger lines.

    Has no effect on balances or the double-entry equation; inactive cost
    centers are refused on new postings.
    """

    __tablename__ = "cost_centers"

    __table_args__ = (
        UniqueConstraint("tenant_id", "code", name="uq_cost_center_tenant_code"),
    )

    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<CostCenter {self.code}>"
