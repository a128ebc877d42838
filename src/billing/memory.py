"""In-memory snapshot and invoice stores. Replace with ``src.data.billing_repo`` for production."""

from __future__ import annotations

import dataclasses
from datetime import datetime

from src.core.exceptions import ConcurrentInvoiceConflict, InvoiceNotFound
from src.core.interfaces import BaseInvoiceStore, BaseSnapshotStore
from src.core.types import InvoiceStatus, TenantInvoice, TenantUsageSnapshot


def _copy(invoice: TenantInvoice) -> TenantInvoice:
    return dataclasses.replace(invoice, usage_breakdown=list(invoice.usage_breakdown))


class InMemorySnapshotStore(BaseSnapshotStore):
    def __init__(self) -> None:
        self._rows: dict[tuple[str, datetime], TenantUsageSnapshot] = {}

    async def upsert(self, snapshot: TenantUsageSnapshot) -> TenantUsageSnapshot:
        self._rows[(snapshot.tenant_id, snapshot.period_start)] = snapshot
        return snapshot

    async def get(self, tenant_id: str, period_start: datetime) -> TenantUsageSnapshot | None:
        return self._rows.get((tenant_id, period_start))

    def __len__(self) -> int:
        return len(self._rows)


class InMemoryInvoiceStore(BaseInvoiceStore):
    def __init__(self) -> None:
        self._by_id: dict[str, TenantInvoice] = {}
        self._by_period: dict[tuple[str, datetime, datetime], str] = {}

    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice | None:
        invoice_id = self._by_period.get((tenant_id, period_start, period_end))
        if invoice_id is None:
            return None
        return _copy(self._by_id[invoice_id])

    async def get(self, invoice_id: str) -> TenantInvoice | None:
        invoice = self._by_id.get(invoice_id)
        return _copy(invoice) if invoice is not None else None

    async def list_for_tenant(self, tenant_id: str) -> list[TenantInvoice]:
        invoices = [_copy(i) for i in self._by_id.values() if i.tenant_id == tenant_id]
        return sorted(invoices, key=lambda i: i.period_start, reverse=True)

    async def insert(self, invoice: TenantInvoice) -> TenantInvoice:
        if invoice.period_key in self._by_period:
            msg = "invoice already exists for period"
            raise ConcurrentInvoiceConflict(msg, context={"tenant_id": invoice.tenant_id})
        self._by_period[invoice.period_key] = invoice.invoice_id
        self._by_id[invoice.invoice_id] = _copy(invoice)
        return _copy(invoice)

    async def replace_draft(self, invoice: TenantInvoice) -> TenantInvoice:
        stored = self._by_id.get(invoice.invoice_id)
        if stored is None or stored.status != InvoiceStatus.DRAFT:
            msg = "invoice is no longer a draft"
            raise ConcurrentInvoiceConflict(msg, context={"invoice_id": invoice.invoice_id})
        self._by_id[invoice.invoice_id] = _copy(invoice)
        return _copy(invoice)

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
        stored = self._by_id.get(invoice_id)
        if stored is None:
            msg = f"invoice {invoice_id} not found"
            raise InvoiceNotFound(msg, context={"invoice_id": invoice_id})
        if stored.status != from_status:
            msg = f"invoice is {stored.status.value}, expected {from_status.value}"
            raise ConcurrentInvoiceConflict(msg, context={"invoice_id": invoice_id})

        stored.status = to_status
        stored.updated_at = at
        if to_status == InvoiceStatus.FINALIZED:
            stored.finalized_at = at
            stored.due_date = due_date
        if payment_reference is not None:
            stored.payment_reference = payment_reference
        return _copy(stored)
