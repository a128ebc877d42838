"""Multi-tenant directory — tenants, plans and subscription status for billing.

Plan tier and region are the inputs to multiplier conditions; the
subscription status decides whether a tenant is billable at all.
"""

from __future__ import annotations

from typing import Any

from src.core.interfaces import BaseTenantDirectory
from src.core.logging import get_logger
from src.core.types import Tenant, TenantPlan

log = get_logger(__name__)


class TenantManager(BaseTenantDirectory):
    """In-memory tenant store. ``src.data.tenants.TenantRepository`` is the DB-backed one."""

    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}

    def create_tenant(
        self,
        tenant_id: str,
        name: str,
        email: str = "",
        plan: TenantPlan = TenantPlan.FREE,
        region: str = "",
        subscription_status: str = "active",
    ) -> Tenant:
        if tenant_id in self._tenants:
            msg = f"tenant '{tenant_id}' already exists"
            raise ValueError(msg)

        tenant = Tenant(
            tenant_id=tenant_id,
            name=name,
            email=email,
            plan=plan,
            region=region,
            subscription_status=subscription_status,
        )
        self._tenants[tenant_id] = tenant
        log.info("tenant_created", tenant_id=tenant_id, plan=plan.value, region=region)
        return tenant

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    async def list_active_tenants(self) -> list[Tenant]:
        return [t for t in self._tenants.values() if t.is_billable]

    # ── Updates ──────────────────────────────────────────────────
    # Each returns False when the tenant is unknown.

    def update_plan(self, tenant_id: str, plan: TenantPlan) -> bool:
        return self._update(tenant_id, "plan_updated", plan=plan)

    def move_region(self, tenant_id: str, region: str) -> bool:
        return self._update(tenant_id, "region_updated", region=region)

    def set_subscription_status(self, tenant_id: str, status: str) -> bool:
        return self._update(tenant_id, "subscription_status_updated", subscription_status=status)

    def deactivate(self, tenant_id: str) -> bool:
        return self._update(tenant_id, "tenant_deactivated", is_active=False)

    def _update(self, tenant_id: str, event: str, **changes: Any) -> bool:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            return False
        for attr, value in changes.items():
            setattr(tenant, attr, value)
        log.info(
            event,
            tenant_id=tenant_id,
            **{k: getattr(v, "value", v) for k, v in changes.items()},
        )
        return True
