"""CostCenterService -- maintains the cost-center reporting dimension."""

from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import CostCenterInfo
from ledger_kernel.domain.tenant import require_tenant
from ledger_kernel.exceptions import DuplicateCodeError, ValidationError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.cost_center import CostCenter
from ledger_kernel.services.base import BaseService

logger = get_logger("services.cost_center")


class CostCenterService(BaseService[CostCenter]):

    def create(self, tenant_id: str, code: str, name: str) -> CostCenterInfo:
        require_tenant(tenant_id)
        if not isinstance(code, str) or not code.strip():
            raise ValidationError("code is required", field="code")
        if not isinstance(name, str) or not name.strip():
            raise ValidationError("name is required", field="name")
        code = code.strip()
        if self.find_by_code(tenant_id, code) is not None:
            raise DuplicateCodeError("CostCenter", code, tenant_id)

        cost_center = CostCenter(tenant_id=tenant_id, code=code, name=name.strip(), is_active=True)
        self.session.add(cost_center)
        self.session.flush()
        logger.info("cost_center_created", extra={"cost_center_id": str(cost_center.id), "code": code})
        return CostCenterInfo.from_model(cost_center)

    def list(self, tenant_id: str, active_only: bool = False) -> list[CostCenterInfo]:
        require_tenant(tenant_id)
        query = select(CostCenter).where(CostCenter.tenant_id == tenant_id)
        if active_only:
            query = query.where(CostCenter.is_active.is_(True))
        return [CostCenterInfo.from_model(c) for c in self.session.execute(query.order_by(CostCenter.code)).scalars()]

    def deactivate(self, tenant_id: str, cost_center_id: UUID) -> CostCenterInfo:
        require_tenant(tenant_id)
        cost_center = self.session.execute(
            select(CostCenter).where(CostCenter.id == cost_center_id, CostCenter.tenant_id == tenant_id)
        ).scalar_one_or_none()
        if cost_center is None:
            raise ValidationError(f"unknown cost center: {cost_center_id}", field="cost_center_id")
        cost_center.is_active = False
        self.session.flush()
        logger.info("cost_center_deactivated", extra={"cost_center_id": str(cost_center.id)})
        return CostCenterInfo.from_model(cost_center)

    def find_by_code(self, tenant_id: str, code: str) -> CostCenter | None:
        return self.session.execute(
            select(CostCenter).where(CostCenter.tenant_id == tenant_id, CostCenter.code == code)
        ).scalar_one_or_none()
