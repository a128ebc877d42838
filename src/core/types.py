"""System-wide shared types — the single source of truth for billing data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Union

from src.core.constants import (
    BILLABLE_SUBSCRIPTION_STATUSES,
    UNIT_CALL,
    UNIT_GIB,
    UNIT_USER,
    UNIT_VIDEO,
    UNIT_VIEW,
)


# ── Enums ────────────────────────────────────────────────────────

class MetricType(str, Enum):
    STORAGE = "storage"
    BANDWIDTH = "bandwidth"
    VIDEO_COUNT = "video_count"
    USER_COUNT = "user_count"
    API_CALLS = "api_calls"
    VIEWS = "views"

    @property
    def unit(self) -> str:
        return _METRIC_UNITS[self]

    @property
    def is_byte_metric(self) -> bool:
        return self in (MetricType.STORAGE, MetricType.BANDWIDTH)


_METRIC_UNITS: dict[MetricType, str] = {
    MetricType.STORAGE: UNIT_GIB,
    MetricType.BANDWIDTH: UNIT_GIB,
    MetricType.VIDEO_COUNT: UNIT_VIDEO,
    MetricType.USER_COUNT: UNIT_USER,
    MetricType.API_CALLS: UNIT_CALL,
    MetricType.VIEWS: UNIT_VIEW,
}


class TenantPlan(str, Enum):
    FREE = "free"
    STARTER = "starter"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    FINALIZED = "finalized"
    PAYMENT_REQUESTED = "payment_requested"
    PAID = "paid"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (InvoiceStatus.PAID, InvoiceStatus.FAILED)


# ── Plan Configuration ───────────────────────────────────────────

@dataclass(frozen=True)
class PlanLimits:
    """Included allowance per plan. Zero means no allowance, never unlimited."""

    storage_limit_bytes: int = 0
    bandwidth_limit_bytes: int = 0
    video_limit: int = 0
    user_limit: int = 0
    api_calls_limit: int = 0

    def raw_limit(self, metric: MetricType) -> int:
        """Limit in the metric's raw unit (bytes for storage/bandwidth)."""
        if metric == MetricType.STORAGE:
            return self.storage_limit_bytes
        if metric == MetricType.BANDWIDTH:
            return self.bandwidth_limit_bytes
        if metric == MetricType.VIDEO_COUNT:
            return self.video_limit
        if metric == MetricType.USER_COUNT:
            return self.user_limit
        if metric == MetricType.API_CALLS:
            return self.api_calls_limit
        return 0


@dataclass(frozen=True)
class Tier:
    """Slice of the overage quantity. ``upper_bound=None`` is unbounded."""

    upper_bound: Decimal | None
    price_per_unit: Decimal

    def to_dict(self) -> dict[str, str | None]:
        return {
            "upper_bound": None if self.upper_bound is None else str(self.upper_bound),
            "price_per_unit": str(self.price_per_unit),
        }


@dataclass(frozen=True)
class OverageRate:
    """Flat ``unit_price`` or graduated ``tiers`` for one metric."""

    metric_type: MetricType
    unit_price: Decimal | None = None
    tiers: tuple[Tier, ...] = ()
    currency: str = "USD"
    unit: str = ""

    @property
    def is_tiered(self) -> bool:
        return bool(self.tiers)

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_type": self.metric_type.value,
            "unit_price": None if self.unit_price is None else str(self.unit_price),
            "tiers": [t.to_dict() for t in self.tiers],
            "currency": self.currency,
            "unit": self.unit or self.metric_type.unit,
        }


@dataclass(frozen=True)
class Plan:
    slug: str
    base_price: Decimal
    currency: str
    limits: PlanLimits
    rates: dict[MetricType, OverageRate] = field(default_factory=dict)


# ── Multiplier Conditions (closed tagged union) ──────────────────

@dataclass(frozen=True)
class PlanTierEquals:
    tier: TenantPlan
    kind: str = "plan_tier_equals"

    def matches(self, tenant: Tenant) -> bool:
        return tenant.plan == self.tier


@dataclass(frozen=True)
class RegionIn:
    regions: frozenset[str]
    kind: str = "region_in"

    def matches(self, tenant: Tenant) -> bool:
        return tenant.region in self.regions


@dataclass(frozen=True)
class TenantIdIn:
    tenant_ids: frozenset[str]
    kind: str = "tenant_id_in"

    def matches(self, tenant: Tenant) -> bool:
        return tenant.tenant_id in self.tenant_ids


MultiplierCondition = Union[PlanTierEquals, RegionIn, TenantIdIn]


@dataclass(frozen=True)
class UsageMultiplier:
    """Scaling factor applied to raw usage before the limit comparison."""

    name: str
    metric_type: MetricType
    multiplier: Decimal
    conditions: tuple[MultiplierCondition, ...] = ()
    is_active: bool = True

    def applies_to(self, tenant: Tenant, metric: MetricType) -> bool:
        if not self.is_active or self.metric_type != metric:
            return False
        return all(c.matches(tenant) for c in self.conditions)


# ── Tenants ──────────────────────────────────────────────────────

@dataclass
class Tenant:
    """Billing-relevant view of a tenant."""

    tenant_id: str
    name: str
    email: str = ""
    plan: TenantPlan = TenantPlan.FREE
    region: str = ""
    subscription_status: str = "active"
    is_active: bool = True
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_billable(self) -> bool:
        return self.is_active and self.subscription_status in BILLABLE_SUBSCRIPTION_STATUSES


# ── Usage ────────────────────────────────────────────────────────

@dataclass(frozen=True)
class UsageCounters:
    """Raw counters reported by the upstream usage feed for a time range."""

    storage_bytes: int = 0
    bandwidth_bytes: int = 0
    video_count: int = 0
    view_count: int = 0
    unique_viewers: int = 0
    user_count: int = 0
    api_calls: int = 0


@dataclass(frozen=True)
class TenantUsageSnapshot:
    """Aggregated usage for one tenant over ``[period_start, period_end)``."""

    tenant_id: str
    period_start: datetime
    period_end: datetime
    storage_bytes: int = 0
    bandwidth_bytes: int = 0
    video_count: int = 0
    view_count: int = 0
    unique_viewers: int = 0
    user_count: int = 0
    api_calls: int = 0
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def raw_usage(self, metric: MetricType) -> int:
        """Usage in the metric's raw unit (bytes for storage/bandwidth)."""
        return {
            MetricType.STORAGE: self.storage_bytes,
            MetricType.BANDWIDTH: self.bandwidth_bytes,
            MetricType.VIDEO_COUNT: self.video_count,
            MetricType.USER_COUNT: self.user_count,
            MetricType.API_CALLS: self.api_calls,
            MetricType.VIEWS: self.view_count,
        }[metric]

    def same_counters(self, other: TenantUsageSnapshot) -> bool:
        return (
            self.tenant_id == other.tenant_id
            and self.period_start == other.period_start
            and self.period_end == other.period_end
            and self.storage_bytes == other.storage_bytes
            and self.bandwidth_bytes == other.bandwidth_bytes
            and self.video_count == other.video_count
            and self.view_count == other.view_count
            and self.unique_viewers == other.unique_viewers
            and self.user_count == other.user_count
            and self.api_calls == other.api_calls
        )


# ── Invoices ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class TierCharge:
    upper_bound: Decimal | None
    price_per_unit: Decimal
    quantity: Decimal
    cost: Decimal

    def to_dict(self) -> dict[str, str | None]:
        return {
            "upper_bound": None if self.upper_bound is None else str(self.upper_bound),
            "price_per_unit": str(self.price_per_unit),
            "quantity": str(self.quantity),
            "cost": str(self.cost),
        }


@dataclass(frozen=True)
class MetricCharge:
    """One usage-breakdown line. Configuration is copied by value."""

    metric_type: MetricType
    unit: str
    raw_usage: Decimal
    multiplier: Decimal
    adjusted_usage: Decimal
    included: Decimal
    overage_quantity: Decimal
    overage_cost: Decimal
    rate: dict[str, Any] | None = None
    tier_charges: tuple[TierCharge, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "metric_type": self.metric_type.value,
            "unit": self.unit,
            "raw_usage": str(self.raw_usage),
            "multiplier": str(self.multiplier),
            "adjusted_usage": str(self.adjusted_usage),
            "included": str(self.included),
            "overage_quantity": str(self.overage_quantity),
            "overage_cost": str(self.overage_cost),
            "rate": self.rate,
            "tier_charges": [t.to_dict() for t in self.tier_charges],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MetricCharge:
        return cls(
            metric_type=MetricType(data["metric_type"]),
            unit=data["unit"],
            raw_usage=Decimal(data["raw_usage"]),
            multiplier=Decimal(data["multiplier"]),
            adjusted_usage=Decimal(data["adjusted_usage"]),
            included=Decimal(data["included"]),
            overage_quantity=Decimal(data["overage_quantity"]),
            overage_cost=Decimal(data["overage_cost"]),
            rate=data.get("rate"),
            tier_charges=tuple(
                TierCharge(
                    upper_bound=None if t["upper_bound"] is None else Decimal(t["upper_bound"]),
                    price_per_unit=Decimal(t["price_per_unit"]),
                    quantity=Decimal(t["quantity"]),
                    cost=Decimal(t["cost"]),
                )
                for t in data.get("tier_charges", [])
            ),
        )


@dataclass
class TenantInvoice:
    """Invoice for one tenant and billing period.

    Mutable only while ``status`` is DRAFT.
    """

    invoice_id: str
    tenant_id: str
    period_start: datetime
    period_end: datetime
    plan_slug: str
    base_amount: Decimal
    overage_amount: Decimal
    total_amount: Decimal
    currency: str
    usage_breakdown: list[MetricCharge] = field(default_factory=list)
    status: InvoiceStatus = InvoiceStatus.DRAFT
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finalized_at: datetime | None = None
    due_date: datetime | None = None
    payment_reference: str | None = None

    @property
    def period_key(self) -> tuple[str, datetime, datetime]:
        return (self.tenant_id, self.period_start, self.period_end)

    def breakdown_dicts(self) -> list[dict[str, Any]]:
        return [line.to_dict() for line in self.usage_breakdown]


@dataclass(frozen=True)
class PaymentRequest:
    """Charge request handed to the payment collaborator."""

    request_id: str
    invoice_id: str
    tenant_id: str
    amount: Decimal
    currency: str
    period_start: datetime
    period_end: datetime
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, str]:
        return {
            "request_id": self.request_id,
            "invoice_id": self.invoice_id,
            "tenant_id": self.tenant_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "requested_at": self.requested_at.isoformat(),
        }
