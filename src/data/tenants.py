"""DB-backed tenant directory — the PostgreSQL counterpart of the in-memory TenantManager."""

from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.exceptions import InvalidBillingConfiguration
from src.core.interfaces import BaseTenantDirectory
from src.core.logging import get_logger
from src.core.types import Tenant, TenantPlan

log = get_logger(__name__)

_BILLABLE = "is_active = true AND subscription_status IN ('active', 'trialing')"


class TenantRepository(BaseTenantDirectory):
    """Async PostgreSQL-backed tenant lookup."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        """Look up a tenant by ID."""
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text("SELECT * FROM tenants WHERE tenant_id = :tid"),
                {"tid": tenant_id},
            )
            r = row.mappings().first()
            if r is None:
                return None
            return self._row_to_tenant(r)

    async def list_active_tenants(self) -> list[Tenant]:
        async with self._engine.begin() as conn:
            rows = await conn.execute(text(f"SELECT * FROM tenants WHERE {_BILLABLE} ORDER BY tenant_id"))
            return [self._row_to_tenant(r) for r in rows.mappings().all()]

    async def list_active_tenant_ids(self) -> list[str]:
        """Ids only, so one misconfigured row fails that tenant and not the listing."""
        async with self._engine.begin() as conn:
            rows = await conn.execute(
                text(f"SELECT tenant_id FROM tenants WHERE {_BILLABLE} ORDER BY tenant_id")
            )
            return [r["tenant_id"] for r in rows.mappings().all()]

    @staticmethod
    def _row_to_tenant(r: Mapping[str, Any]) -> Tenant:
        """Convert a DB row mapping to a Tenant. An unknown plan is a configuration error."""
        plan_str = r["plan"]
        try:
            plan = TenantPlan(plan_str)
        except ValueError as exc:
            log.error("tenant_unknown_plan", tenant_id=r["tenant_id"], plan=plan_str)
            msg = f"tenant '{r['tenant_id']}' has unknown plan {plan_str!r}"
            raise InvalidBillingConfiguration(
                msg, context={"tenant_id": r["tenant_id"], "plan": plan_str}
            ) from exc

        return Tenant(
            tenant_id=r["tenant_id"],
            name=r["name"],
            email=r.get("email") or "",
            plan=plan,
            region=r.get("region") or "",
            # NULL means no subscription, which is never billable.
            subscription_status=r.get("subscription_status") or "",
            is_active=bool(r["is_active"]),
            created_at=r["created_at"],
        )
