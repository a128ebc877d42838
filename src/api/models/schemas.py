"""Pydantic V2 request/response schemas for the billing API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from src.billing.overage import to_billing_units
from src.billing.runner import BillingRunReport, TenantBillingOutcome
from src.core.types import MetricCharge, MetricType, Plan, TenantInvoice, TenantUsageSnapshot


# ── Invoices ─────────────────────────────────────────────────────

class TierChargeOut(BaseModel):
    upper_bound: Decimal | None = None
    price_per_unit: Decimal
    quantity: Decimal
    cost: Decimal


class MetricChargeOut(BaseModel):
    metric_type: str
    unit: str
    raw_usage: Decimal
    multiplier: Decimal
    adjusted_usage: Decimal
    included: Decimal
    overage_quantity: Decimal
    overage_cost: Decimal
    rate: dict[str, Any] | None = None
    tier_charges: list[TierChargeOut] = Field(default_factory=list)

    @classmethod
    def from_charge(cls, charge: MetricCharge) -> MetricChargeOut:
        return cls.model_validate(charge.to_dict())


class InvoiceOut(BaseModel):
    invoice_id: str
    tenant_id: str
    period_start: datetime
    period_end: datetime
    plan_slug: str
    base_amount: Decimal
    overage_amount: Decimal
    total_amount: Decimal
    currency: str
    status: str
    usage_breakdown: list[MetricChargeOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    finalized_at: datetime | None = None
    due_date: datetime | None = None
    payment_reference: str | None = None

    @classmethod
    def from_invoice(cls, invoice: TenantInvoice) -> InvoiceOut:
        return cls(
            invoice_id=invoice.invoice_id,
            tenant_id=invoice.tenant_id,
            period_start=invoice.period_start,
            period_end=invoice.period_end,
            plan_slug=invoice.plan_slug,
            base_amount=invoice.base_amount,
            overage_amount=invoice.overage_amount,
            total_amount=invoice.total_amount,
            currency=invoice.currency,
            status=invoice.status.value,
            usage_breakdown=[MetricChargeOut.from_charge(c) for c in invoice.usage_breakdown],
            created_at=invoice.created_at,
            updated_at=invoice.updated_at,
            finalized_at=invoice.finalized_at,
            due_date=invoice.due_date,
            payment_reference=invoice.payment_reference,
        )


# ── Billing Runs ─────────────────────────────────────────────────

class BillingRunCreate(BaseModel):
    """Request body for triggering a billing run. Omit the period for last month."""

    period_start: datetime | None = None
    period_end: datetime | None = None
    tenant_ids: list[str] | None = None


class TenantOutcomeOut(BaseModel):
    tenant_id: str
    succeeded: bool
    invoice_id: str | None = None
    status: str | None = None
    total_amount: Decimal | None = None
    error_type: str | None = None
    error: str | None = None
    fatal: bool = False

    @classmethod
    def from_outcome(cls, outcome: TenantBillingOutcome) -> TenantOutcomeOut:
        invoice = outcome.invoice
        return cls(
            tenant_id=outcome.tenant_id,
            succeeded=outcome.succeeded,
            invoice_id=invoice.invoice_id if invoice else None,
            status=invoice.status.value if invoice else None,
            total_amount=invoice.total_amount if invoice else None,
            error_type=outcome.error_type,
            error=outcome.error,
            fatal=outcome.fatal,
        )


class BillingRunOut(BaseModel):
    period_start: datetime
    period_end: datetime
    invoiced: int
    failed: int
    outcomes: list[TenantOutcomeOut] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: BillingRunReport) -> BillingRunOut:
        return cls(
            period_start=report.period_start,
            period_end=report.period_end,
            invoiced=len(report.invoiced),
            failed=len(report.failed),
            outcomes=[TenantOutcomeOut.from_outcome(o) for o in report.outcomes],
        )


# ── Catalog & Usage ──────────────────────────────────────────────

class TierOut(BaseModel):
    upper_bound: Decimal | None = None
    price_per_unit: Decimal


class RateOut(BaseModel):
    metric_type: str
    unit: str
    currency: str
    unit_price: Decimal | None = None
    tiers: list[TierOut] = Field(default_factory=list)


class PlanLimitsOut(BaseModel):
    storage_limit_bytes: int
    bandwidth_limit_bytes: int
    video_limit: int
    user_limit: int
    api_calls_limit: int


class PlanOut(BaseModel):
    slug: str
    base_price: Decimal
    currency: str
    limits: PlanLimitsOut
    rates: list[RateOut] = Field(default_factory=list)

    @classmethod
    def from_plan(cls, plan: Plan) -> PlanOut:
        return cls(
            slug=plan.slug,
            base_price=plan.base_price,
            currency=plan.currency,
            limits=PlanLimitsOut.model_validate(plan.limits, from_attributes=True),
            rates=[
                RateOut.model_validate(plan.rates[metric].to_dict())
                for metric in MetricType
                if metric in plan.rates
            ],
        )


class MetricUsageOut(BaseModel):
    """Usage and allowance in billing units (GiB for storage and bandwidth)."""

    metric_type: str
    unit: str
    usage: Decimal
    included: Decimal
    over_limit: bool


class UsageSummaryOut(BaseModel):
    tenant_id: str
    plan_slug: str
    period_start: datetime
    period_end: datetime
    captured_at: datetime
    storage_bytes: int
    bandwidth_bytes: int
    video_count: int
    view_count: int
    unique_viewers: int
    user_count: int
    api_calls: int
    limits: PlanLimitsOut
    metrics: list[MetricUsageOut] = Field(default_factory=list)

    @classmethod
    def from_snapshot(cls, snapshot: TenantUsageSnapshot, plan: Plan) -> UsageSummaryOut:
        metrics = []
        for metric in MetricType:
            usage = to_billing_units(metric, snapshot.raw_usage(metric))
            included = to_billing_units(metric, plan.limits.raw_limit(metric))
            metrics.append(
                MetricUsageOut(
                    metric_type=metric.value,
                    unit=metric.unit,
                    usage=usage,
                    included=included,
                    over_limit=usage > included,
                )
            )
        return cls(
            tenant_id=snapshot.tenant_id,
            plan_slug=plan.slug,
            period_start=snapshot.period_start,
            period_end=snapshot.period_end,
            captured_at=snapshot.captured_at,
            storage_bytes=snapshot.storage_bytes,
            bandwidth_bytes=snapshot.bandwidth_bytes,
            video_count=snapshot.video_count,
            view_count=snapshot.view_count,
            unique_viewers=snapshot.unique_viewers,
            user_count=snapshot.user_count,
            api_calls=snapshot.api_calls,
            limits=PlanLimitsOut.model_validate(plan.limits, from_attributes=True),
            metrics=metrics,
        )


# ── Payment Callback ─────────────────────────────────────────────

class PaymentCallbackIn(BaseModel):
    """Terminal verdict reported by the payment collaborator."""

    invoice_id: str = Field(..., min_length=1)
    status: Literal["paid", "failed"]
    reference: str | None = Field(default=None, max_length=200)


# ── Generic ───────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "dev"


class ErrorResponse(BaseModel):
    detail: str
