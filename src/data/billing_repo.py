"""DB-backed snapshot and invoice stores.

Uniqueness on ``(tenant_id, period_start)`` for snapshots and
``(tenant_id, period_start, period_end)`` for invoices is enforced by the
database; conditional writes report lost races as ``ConcurrentInvoiceConflict``.
"""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import bindparam, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine

from src.billing.overage import round_money
from src.core.exceptions import ConcurrentInvoiceConflict, InvoiceNotFound
from src.core.interfaces import BaseInvoiceStore, BaseSnapshotStore
from src.core.logging import get_logger
from src.core.types import InvoiceStatus, MetricCharge, TenantInvoice, TenantUsageSnapshot

log = get_logger(__name__)

_UPSERT_SNAPSHOT = text(
    """
    INSERT INTO tenant_usage_snapshots
        (tenant_id, period_start, period_end, storage_bytes, bandwidth_bytes,
         video_count, view_count, unique_viewers, user_count, api_calls, captured_at)
    VALUES
        (:tid, :start, :end, :storage, :bandwidth,
         :videos, :views, :viewers, :users, :api_calls, :captured_at)
    ON CONFLICT (tenant_id, period_start) DO UPDATE SET
        period_end = EXCLUDED.period_end,
        storage_bytes = EXCLUDED.storage_bytes,
        bandwidth_bytes = EXCLUDED.bandwidth_bytes,
        video_count = EXCLUDED.video_count,
        view_count = EXCLUDED.view_count,
        unique_viewers = EXCLUDED.unique_viewers,
        user_count = EXCLUDED.user_count,
        api_calls = EXCLUDED.api_calls,
        captured_at = EXCLUDED.captured_at
    """
)

_INSERT_INVOICE = text(
    """
    INSERT INTO tenant_invoices
        (invoice_id, tenant_id, period_start, period_end, plan_slug,
         base_amount, overage_amount, total_amount, currency, usage_breakdown,
         status, created_at, updated_at)
    VALUES
        (:iid, :tid, :start, :end, :plan,
         :base, :overage, :total, :currency, :breakdown,
         'draft', :now, :now)
    ON CONFLICT (tenant_id, period_start, period_end) DO NOTHING
    RETURNING *
    """
).bindparams(bindparam("breakdown", type_=JSONB))

_REPLACE_DRAFT = text(
    """
    UPDATE tenant_invoices SET
        plan_slug = :plan,
        base_amount = :base,
        overage_amount = :overage,
        total_amount = :total,
        currency = :currency,
        usage_breakdown = :breakdown,
        updated_at = :now
    WHERE invoice_id = :iid AND status = 'draft'
    RETURNING *
    """
).bindparams(bindparam("breakdown", type_=JSONB))

_TRANSITION = text(
    """
    UPDATE tenant_invoices SET
        status = :to_status,
        updated_at = :at,
        finalized_at = CASE WHEN :finalizing THEN :at ELSE finalized_at END,
        due_date = COALESCE(:due_date, due_date),
        payment_reference = COALESCE(:ref, payment_reference)
    WHERE invoice_id = :iid AND status = :from_status
    RETURNING *
    """
)


class SqlSnapshotStore(BaseSnapshotStore):
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def upsert(self, snapshot: TenantUsageSnapshot) -> TenantUsageSnapshot:
        async with self._engine.begin() as conn:
            await conn.execute(
                _UPSERT_SNAPSHOT,
                {
                    "tid": snapshot.tenant_id,
                    "start": snapshot.period_start,
                    "end": snapshot.period_end,
                    "storage": snapshot.storage_bytes,
                    "bandwidth": snapshot.bandwidth_bytes,
                    "videos": snapshot.video_count,
                    "views": snapshot.view_count,
                    "viewers": snapshot.unique_viewers,
                    "users": snapshot.user_count,
                    "api_calls": snapshot.api_calls,
                    "captured_at": snapshot.captured_at,
                },
            )
        return snapshot

    async def get(self, tenant_id: str, period_start: datetime) -> TenantUsageSnapshot | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text(
                    "SELECT * FROM tenant_usage_snapshots "
                    "WHERE tenant_id = :tid AND period_start = :start"
                ),
                {"tid": tenant_id, "start": period_start},
            )
            r = row.mappings().first()
            if r is None:
                return None
            return TenantUsageSnapshot(
                tenant_id=r["tenant_id"],
                period_start=r["period_start"],
                period_end=r["period_end"],
                storage_bytes=r["storage_bytes"],
                bandwidth_bytes=r["bandwidth_bytes"],
                video_count=r["video_count"],
                view_count=r["view_count"],
                unique_viewers=r["unique_viewers"],
                user_count=r["user_count"],
                api_calls=r["api_calls"],
                captured_at=r["captured_at"],
            )


class SqlInvoiceStore(BaseInvoiceStore):
    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def get_for_period(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text(
                    "SELECT * FROM tenant_invoices WHERE tenant_id = :tid "
                    "AND period_start = :start AND period_end = :end"
                ),
                {"tid": tenant_id, "start": period_start, "end": period_end},
            )
            r = row.mappings().first()
            return self._row_to_invoice(r) if r is not None else None

    async def get(self, invoice_id: str) -> TenantInvoice | None:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                text("SELECT * FROM tenant_invoices WHERE invoice_id = :iid"),
                {"iid": invoice_id},
            )
            r = row.mappings().first()
            return self._row_to_invoice(r) if r is not None else None

    async def list_for_tenant(self, tenant_id: str) -> list[TenantInvoice]:
        async with self._engine.begin() as conn:
            rows = await conn.execute(
                text(
                    "SELECT * FROM tenant_invoices WHERE tenant_id = :tid "
                    "ORDER BY period_start DESC"
                ),
                {"tid": tenant_id},
            )
            return [self._row_to_invoice(r) for r in rows.mappings().all()]

    async def insert(self, invoice: TenantInvoice) -> TenantInvoice:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                _INSERT_INVOICE,
                {
                    **self._amount_params(invoice),
                    "tid": invoice.tenant_id,
                    "start": invoice.period_start,
                    "end": invoice.period_end,
                    "now": invoice.created_at,
                },
            )
            r = row.mappings().first()

        if r is None:
            msg = "invoice already exists for period"
            raise ConcurrentInvoiceConflict(
                msg,
                context={"tenant_id": invoice.tenant_id, "period_start": invoice.period_start.isoformat()},
            )
        return self._row_to_invoice(r)

    async def replace_draft(self, invoice: TenantInvoice) -> TenantInvoice:
        async with self._engine.begin() as conn:
            row = await conn.execute(
                _REPLACE_DRAFT,
                {**self._amount_params(invoice), "now": invoice.updated_at},
            )
            r = row.mappings().first()

        if r is None:
            msg = "invoice is no longer a draft"
            raise ConcurrentInvoiceConflict(msg, context={"invoice_id": invoice.invoice_id})
        return self._row_to_invoice(r)

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
        async with self._engine.begin() as conn:
            row = await conn.execute(
                _TRANSITION,
                {
                    "iid": invoice_id,
                    "from_status": from_status.value,
                    "to_status": to_status.value,
                    "finalizing": to_status == InvoiceStatus.FINALIZED,
                    "at": at,
                    "due_date": due_date,
                    "ref": payment_reference,
                },
            )
            r = row.mappings().first()

        if r is not None:
            return self._row_to_invoice(r)

        if await self.get(invoice_id) is None:
            msg = f"invoice {invoice_id} not found"
            raise InvoiceNotFound(msg, context={"invoice_id": invoice_id})
        msg = f"invoice {invoice_id} is no longer {from_status.value}"
        raise ConcurrentInvoiceConflict(msg, context={"invoice_id": invoice_id})

    @staticmethod
    def _amount_params(invoice: TenantInvoice) -> dict[str, Any]:
        return {
            "iid": invoice.invoice_id,
            "plan": invoice.plan_slug,
            "base": invoice.base_amount,
            "overage": invoice.overage_amount,
            "total": invoice.total_amount,
            "currency": invoice.currency,
            "breakdown": invoice.breakdown_dicts(),
        }

    @staticmethod
    def _row_to_invoice(r: Mapping[str, Any]) -> TenantInvoice:
        """Convert a DB row mapping to a TenantInvoice dataclass."""
        # NUMERIC(18, 4) columns come back with four places.
        currency = r["currency"]
        breakdown = r["usage_breakdown"] or []
        if isinstance(breakdown, str):
            breakdown = json.loads(breakdown)

        return TenantInvoice(
            invoice_id=r["invoice_id"],
            tenant_id=r["tenant_id"],
            period_start=r["period_start"],
            period_end=r["period_end"],
            plan_slug=r["plan_slug"],
            base_amount=round_money(Decimal(r["base_amount"]), currency),
            overage_amount=round_money(Decimal(r["overage_amount"]), currency),
            total_amount=round_money(Decimal(r["total_amount"]), currency),
            currency=currency,
            usage_breakdown=[MetricCharge.from_dict(line) for line in breakdown],
            status=InvoiceStatus(r["status"]),
            created_at=r["created_at"],
            updated_at=r["updated_at"],
            finalized_at=r.get("finalized_at"),
            due_date=r.get("due_date"),
            payment_reference=r.get("payment_reference"),
        )
