"""Usage period aggregation — one snapshot per tenant per billing period."""

from __future__ import annotations

from datetime import datetime, timezone

from src.core.exceptions import InvalidPeriod, TenantNotFound
from src.core.interfaces import BaseSnapshotStore, BaseTenantDirectory, BaseUsageFeed
from src.core.logging import get_logger
from src.core.types import Tenant, TenantUsageSnapshot

log = get_logger(__name__)


def validate_period(period_start: datetime, period_end: datetime) -> None:
    """Raise InvalidPeriod unless the bounds form a non-empty, tz-aware range."""
    if period_start.tzinfo is None or period_end.tzinfo is None:
        msg = "billing period bounds must be timezone-aware"
        raise InvalidPeriod(
            msg,
            context={"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
        )
    if period_start >= period_end:
        msg = "period_start must be before period_end"
        raise InvalidPeriod(
            msg,
            context={"period_start": period_start.isoformat(), "period_end": period_end.isoformat()},
        )


async def require_billable_tenant(directory: BaseTenantDirectory, tenant_id: str) -> Tenant:
    """Look up a tenant that has a billable subscription, else TenantNotFound."""
    tenant = await directory.get_tenant(tenant_id)
    if tenant is None:
        msg = f"tenant '{tenant_id}' not found"
        raise TenantNotFound(msg, context={"tenant_id": tenant_id})
    if not tenant.is_billable:
        msg = f"tenant '{tenant_id}' has no billable subscription"
        raise TenantNotFound(
            msg,
            context={
                "tenant_id": tenant_id,
                "subscription_status": tenant.subscription_status,
                "is_active": tenant.is_active,
            },
        )
    return tenant


class UsagePeriodAggregator:
    """Reduces upstream usage counters into a TenantUsageSnapshot and upserts it."""

    def __init__(
        self,
        directory: BaseTenantDirectory,
        feed: BaseUsageFeed,
        snapshots: BaseSnapshotStore,
    ) -> None:
        self._directory = directory
        self._feed = feed
        self._snapshots = snapshots

    async def aggregate(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantUsageSnapshot:
        """Snapshot the period. Unchanged counters keep the stored snapshot, ``captured_at`` included."""
        validate_period(period_start, period_end)
        await require_billable_tenant(self._directory, tenant_id)

        counters = await self._feed.fetch_counters(tenant_id, period_start, period_end)

        snapshot = TenantUsageSnapshot(
            tenant_id=tenant_id,
            period_start=period_start,
            period_end=period_end,
            storage_bytes=counters.storage_bytes,
            bandwidth_bytes=counters.bandwidth_bytes,
            video_count=counters.video_count,
            view_count=counters.view_count,
            unique_viewers=counters.unique_viewers,
            user_count=counters.user_count,
            api_calls=counters.api_calls,
            captured_at=datetime.now(timezone.utc),
        )
        existing = await self._snapshots.get(tenant_id, period_start)
        if existing is not None and existing.same_counters(snapshot):
            log.info("usage_snapshot_unchanged", tenant_id=tenant_id, period_start=period_start.isoformat())
            return existing
        stored = await self._snapshots.upsert(snapshot)

        log.info(
            "usage_snapshot_aggregated",
            tenant_id=tenant_id,
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
            storage_bytes=stored.storage_bytes,
            bandwidth_bytes=stored.bandwidth_bytes,
            video_count=stored.video_count,
            api_calls=stored.api_calls,
        )
        return stored

    async def get_snapshot(self, tenant_id: str, period_start: datetime) -> TenantUsageSnapshot | None:
        return await self._snapshots.get(tenant_id, period_start)
