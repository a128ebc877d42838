"""Invoice composition — base price plus per-metric overage, idempotent per period.

Lifecycle::

    draft -> finalized -> payment_requested -> paid | failed

Drafts are recomputed on every compose; anything at ``finalized`` or later is
returned as stored. Lost races against another writer for the same
(tenant, period) surface as ``ConcurrentInvoiceConflict`` from the store and
are recovered here by re-reading the stored invoice.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from uuid_extensions import uuid7

from src.billing.aggregator import UsagePeriodAggregator, require_billable_tenant, validate_period
from src.billing.catalog import BillingCatalog
from src.billing.multipliers import MultiplierResolver
from src.billing.overage import OverageCalculator, round_money, to_billing_units
from src.core.constants import DEFAULT_INVOICE_DUE_DAYS
from src.core.exceptions import ConcurrentInvoiceConflict, InvoiceNotFound
from src.core.interfaces import BaseInvoiceStore, BaseTenantDirectory
from src.core.logging import get_logger
from src.core.types import (
    InvoiceStatus,
    MetricCharge,
    MetricType,
    Plan,
    Tenant,
    TenantInvoice,
    TenantUsageSnapshot,
)

log = get_logger(__name__)


class InvoiceComposer:
    """Builds, persists and finalizes TenantInvoice records."""

    def __init__(
        self,
        directory: BaseTenantDirectory,
        catalog: BillingCatalog,
        aggregator: UsagePeriodAggregator,
        invoices: BaseInvoiceStore,
        *,
        due_days: int = DEFAULT_INVOICE_DUE_DAYS,
    ) -> None:
        self._directory = directory
        self._catalog = catalog
        self._aggregator = aggregator
        self._invoices = invoices
        self._due_days = due_days
        self._calculator = OverageCalculator(MultiplierResolver(catalog.multipliers))

    # ── Compose ──────────────────────────────────────────────────

    async def compose(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice:
        validate_period(period_start, period_end)

        existing = await self._invoices.get_for_period(tenant_id, period_start, period_end)
        if existing is not None and existing.status != InvoiceStatus.DRAFT:
            log.info(
                "invoice_already_finalized",
                tenant_id=tenant_id,
                invoice_id=existing.invoice_id,
                status=existing.status.value,
            )
            return existing

        tenant = await require_billable_tenant(self._directory, tenant_id)
        plan = self._catalog.plan_for(tenant)
        snapshot = await self._snapshot_for(tenant_id, period_start, period_end)
        breakdown = self.price_snapshot(tenant, plan, snapshot)

        base_amount = round_money(plan.base_price, plan.currency)
        overage_amount = sum((line.overage_cost for line in breakdown), Decimal(0))
        now = datetime.now(timezone.utc)

        try:
            if existing is None:
                invoice = TenantInvoice(
                    invoice_id=str(uuid7()),
                    tenant_id=tenant_id,
                    period_start=period_start,
                    period_end=period_end,
                    plan_slug=plan.slug,
                    base_amount=base_amount,
                    overage_amount=overage_amount,
                    total_amount=base_amount + overage_amount,
                    currency=plan.currency,
                    usage_breakdown=breakdown,
                    created_at=now,
                    updated_at=now,
                )
                stored = await self._invoices.insert(invoice)
            else:
                invoice = dataclasses.replace(
                    existing,
                    plan_slug=plan.slug,
                    base_amount=base_amount,
                    overage_amount=overage_amount,
                    total_amount=base_amount + overage_amount,
                    currency=plan.currency,
                    usage_breakdown=breakdown,
                    updated_at=now,
                )
                stored = await self._invoices.replace_draft(invoice)
        except ConcurrentInvoiceConflict as exc:
            log.info("invoice_write_conflict", tenant_id=tenant_id, reason=str(exc))
            return await self._reread(tenant_id, period_start, period_end)

        log.info(
            "invoice_composed",
            tenant_id=tenant_id,
            invoice_id=stored.invoice_id,
            plan=plan.slug,
            base_amount=str(stored.base_amount),
            overage_amount=str(stored.overage_amount),
            total_amount=str(stored.total_amount),
            currency=stored.currency,
            recomputed=existing is not None,
        )
        return stored

    def price_snapshot(
        self,
        tenant: Tenant,
        plan: Plan,
        snapshot: TenantUsageSnapshot,
    ) -> list[MetricCharge]:
        """Run the overage calculator for every metric of the snapshot."""
        return [
            self._calculator.compute(
                tenant,
                metric,
                to_billing_units(metric, snapshot.raw_usage(metric)),
                to_billing_units(metric, plan.limits.raw_limit(metric)),
                plan.rates.get(metric),
                currency=plan.currency,
            )
            for metric in MetricType
        ]

    async def _snapshot_for(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantUsageSnapshot:
        snapshot = await self._aggregator.get_snapshot(tenant_id, period_start)
        if snapshot is not None and snapshot.period_end == period_end:
            return snapshot
        return await self._aggregator.aggregate(tenant_id, period_start, period_end)

    async def _reread(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice:
        current = await self._invoices.get_for_period(tenant_id, period_start, period_end)
        if current is None:
            msg = f"invoice for tenant '{tenant_id}' vanished after a write conflict"
            raise InvoiceNotFound(msg, context={"tenant_id": tenant_id})
        return current

    # ── Finalize ─────────────────────────────────────────────────

    async def finalize(self, invoice: TenantInvoice) -> TenantInvoice:
        """Freeze a draft. Already-finalized invoices are returned as stored."""
        if invoice.status != InvoiceStatus.DRAFT:
            return await self.get_invoice(invoice.invoice_id)

        now = datetime.now(timezone.utc)
        try:
            finalized = await self._invoices.transition(
                invoice.invoice_id,
                InvoiceStatus.DRAFT,
                InvoiceStatus.FINALIZED,
                at=now,
                due_date=now + timedelta(days=self._due_days),
            )
        except ConcurrentInvoiceConflict:
            log.info("invoice_finalize_conflict", invoice_id=invoice.invoice_id)
            return await self.get_invoice(invoice.invoice_id)

        log.info(
            "invoice_finalized",
            tenant_id=finalized.tenant_id,
            invoice_id=finalized.invoice_id,
            total_amount=str(finalized.total_amount),
        )
        return finalized

    # ── Queries ──────────────────────────────────────────────────

    async def find_invoice(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice | None:
        return await self._invoices.get_for_period(tenant_id, period_start, period_end)

    async def get_invoice(self, invoice_id: str) -> TenantInvoice:
        invoice = await self._invoices.get(invoice_id)
        if invoice is None:
            msg = f"invoice {invoice_id} not found"
            raise InvoiceNotFound(msg, context={"invoice_id": invoice_id})
        return invoice

    async def list_invoices(self, tenant_id: str) -> list[TenantInvoice]:
        return await self._invoices.list_for_tenant(tenant_id)
