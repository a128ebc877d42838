"""Billing endpoints — operator-triggered runs, invoice reads, payment callbacks."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status

from src.api.deps import get_billing_services
from src.api.middleware import require_operator, require_payment_collaborator
from src.api.models.schemas import (
    BillingRunCreate,
    BillingRunOut,
    InvoiceOut,
    PaymentCallbackIn,
    PlanOut,
    UsageSummaryOut,
)
from src.billing.aggregator import validate_period
from src.billing.runner import previous_month_period
from src.billing.wiring import BillingServices
from src.core.exceptions import InvalidInvoiceTransition, InvalidPeriod, InvoiceNotFound
from src.core.types import InvoiceStatus

router = APIRouter(prefix="/billing", tags=["billing"])


def _resolve_period(
    period_start: datetime | None,
    period_end: datetime | None,
) -> tuple[datetime, datetime]:
    """Both bounds or neither; neither means the previous calendar month."""
    if (period_start is None) != (period_end is None):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="period_start and period_end must be given together",
        )
    if period_start is None or period_end is None:
        return previous_month_period()
    try:
        validate_period(period_start, period_end)
    except InvalidPeriod as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        ) from exc
    return period_start, period_end


@router.post(
    "/runs",
    response_model=BillingRunOut,
    dependencies=[Depends(require_operator)],
)
async def create_billing_run(
    body: BillingRunCreate,
    services: BillingServices = Depends(get_billing_services),
) -> BillingRunOut:
    """Bill a period for the given tenants, or for every active tenant."""
    period_start, period_end = _resolve_period(body.period_start, body.period_end)
    report = await services.runner.run(period_start, period_end, body.tenant_ids)
    return BillingRunOut.from_report(report)


@router.get(
    "/tenants/{tenant_id}/invoices",
    response_model=list[InvoiceOut],
    dependencies=[Depends(require_operator)],
)
async def list_tenant_invoices(
    tenant_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> list[InvoiceOut]:
    invoices = await services.composer.list_invoices(tenant_id)
    return [InvoiceOut.from_invoice(i) for i in invoices]


@router.get(
    "/plans",
    response_model=list[PlanOut],
    dependencies=[Depends(require_operator)],
)
async def list_plans(
    services: BillingServices = Depends(get_billing_services),
) -> list[PlanOut]:
    """Plans in the loaded catalog, cheapest first."""
    plans = sorted(services.catalog.plans.values(), key=lambda p: (p.base_price, p.slug))
    return [PlanOut.from_plan(p) for p in plans]


@router.get(
    "/tenants/{tenant_id}/usage",
    response_model=UsageSummaryOut,
    dependencies=[Depends(require_operator)],
)
async def get_tenant_usage(
    tenant_id: str,
    period_start: datetime | None = None,
    period_end: datetime | None = None,
    services: BillingServices = Depends(get_billing_services),
) -> UsageSummaryOut:
    """Stored usage snapshot for a period next to the tenant's plan allowance."""
    period_start, period_end = _resolve_period(period_start, period_end)

    tenant = await services.directory.get_tenant(tenant_id)
    if tenant is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Tenant not found",
        )

    snapshot = await services.aggregator.get_snapshot(tenant_id, period_start)
    if snapshot is None or snapshot.period_end != period_end:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No usage snapshot for this period",
        )
    return UsageSummaryOut.from_snapshot(snapshot, services.catalog.plan_for(tenant))


@router.get(
    "/invoices/{invoice_id}",
    response_model=InvoiceOut,
    dependencies=[Depends(require_operator)],
)
async def get_invoice(
    invoice_id: str,
    services: BillingServices = Depends(get_billing_services),
) -> InvoiceOut:
    try:
        invoice = await services.composer.get_invoice(invoice_id)
    except InvoiceNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        ) from exc
    return InvoiceOut.from_invoice(invoice)


@router.post(
    "/payments/callback",
    response_model=InvoiceOut,
    dependencies=[Depends(require_payment_collaborator)],
)
async def payment_status_callback(
    body: PaymentCallbackIn,
    services: BillingServices = Depends(get_billing_services),
) -> InvoiceOut:
    """Record ``paid`` or ``failed`` as reported by the payment collaborator."""
    try:
        invoice = await services.dispatcher.apply_status_callback(
            body.invoice_id,
            InvoiceStatus(body.status),
            body.reference,
        )
    except InvoiceNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Invoice not found",
        ) from exc
    except InvalidInvoiceTransition as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=str(exc),
        ) from exc
    return InvoiceOut.from_invoice(invoice)
