"""Abstract base classes — storage and collaborator seams of the billing engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from src.core.types import (
    InvoiceStatus,
    PaymentRequest,
    Tenant,
    TenantInvoice,
    TenantUsageSnapshot,
    UsageCounters,
)


class BaseTenantDirectory(ABC):
    """Read access to tenants and their subscriptions."""

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Tenant | None:
        ...

    @abstractmethod
    async def list_active_tenants(self) -> list[Tenant]:
        """Tenants with a billable subscription."""
        ...

    async def list_active_tenant_ids(self) -> list[str]:
        return [t.tenant_id for t in await self.list_active_tenants()]


class BaseUsageFeed(ABC):
    """Upstream per-tenant usage counters scoped to a time range."""

    @abstractmethod
    async def fetch_counters(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> UsageCounters:
        """Counters for events in ``[period_start, period_end)``."""
        ...


class BaseSnapshotStore(ABC):
    """Persistence for TenantUsageSnapshot rows keyed by (tenant, period_start)."""

    @abstractmethod
    async def upsert(self, snapshot: TenantUsageSnapshot) -> TenantUsageSnapshot:
        ...

    @abstractmethod
    async def get(self, tenant_id: str, period_start: datetime) -> TenantUsageSnapshot | None:
        ...


class BaseInvoiceStore(ABC):
    """Persistence for invoices, unique per (tenant, period_start, period_end).

    Writers signal lost races with ``ConcurrentInvoiceConflict``.
    """

    @abstractmethod
    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice | None:
        ...

    @abstractmethod
    async def get(self, invoice_id: str) -> TenantInvoice | None:
        ...

    @abstractmethod
    async def list_for_tenant(self, tenant_id: str) -> list[TenantInvoice]:
        ...

    @abstractmethod
    async def insert(self, invoice: TenantInvoice) -> TenantInvoice:
        """Insert a new DRAFT invoice; conflict if the period key exists."""
        ...

    @abstractmethod
    async def replace_draft(self, invoice: TenantInvoice) -> TenantInvoice:
        """Overwrite a stored invoice that is still DRAFT; conflict otherwise."""
        ...

    @abstractmethod
    async def transition(
        self,
        invoice_id: str,
        from_status: InvoiceStatus,
        to_status: InvoiceStatus,
        *,
        at: datetime,
        due_date: datetime | None = None,
        payment_reference: str | None = None,
    ) -> TenantInvoice:
        """Compare-and-set the status; conflict if it is no longer ``from_status``."""
        ...


class BasePaymentGateway(ABC):
    """Outbound boundary to the payment collaborator."""

    @abstractmethod
    async def submit(self, request: PaymentRequest) -> None:
        """Hand off a charge request. Must not wait for the payment outcome."""
        ...
