"""Tenant id validation; every kernel call carries an explicit tenant."""

from ledger_kernel.exceptions import ValidationError

MAX_TENANT_ID_LENGTH = 64


def require_tenant(tenant_id: str) -> str:
    """Return the tenant id, or raise ValidationError if it is missing or malformed."""
    if not isinstance(tenant_id, str) or not tenant_id.strip():
        raise ValidationError("tenant_id is required", field="tenant_id")
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise ValidationError(
            f"tenant_id longer than {MAX_TENANT_ID_LENGTH} characters", field="tenant_id"
        )
    return tenant_id
