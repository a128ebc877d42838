"""Billing catalog — plans, overage rates and usage multipliers loaded from YAML.

The YAML document is validated with pydantic models and converted into the
frozen dataclasses from ``src.core.types``. Every problem (unknown condition
kind, negative limit, non-monotonic tiers, duplicate rates) is raised as
``InvalidBillingConfiguration`` at load time, never at billing time.
"""

from __future__ import annotations

from decimal import Decimal
from pathlib import Path
from typing import Annotated, Any, Literal, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from src.billing.overage import validate_tiers
from src.core.exceptions import InvalidBillingConfiguration
from src.core.logging import get_logger
from src.core.types import (
    MetricType,
    MultiplierCondition,
    OverageRate,
    Plan,
    PlanLimits,
    PlanTierEquals,
    RegionIn,
    Tenant,
    TenantIdIn,
    TenantPlan,
    Tier,
    UsageMultiplier,
)

log = get_logger(__name__)


# ── Document Models ──────────────────────────────────────────────

class _Doc(BaseModel):
    model_config = ConfigDict(extra="forbid")


class PlanTierEqualsDoc(_Doc):
    kind: Literal["plan_tier_equals"]
    tier: TenantPlan


class RegionInDoc(_Doc):
    kind: Literal["region_in"]
    regions: list[str] = Field(min_length=1)


class TenantIdInDoc(_Doc):
    kind: Literal["tenant_id_in"]
    tenant_ids: list[str] = Field(min_length=1)


ConditionDoc = Annotated[
    Union[PlanTierEqualsDoc, RegionInDoc, TenantIdInDoc],
    Field(discriminator="kind"),
]


class TierDoc(_Doc):
    upper_bound: Decimal | None = None
    price_per_unit: Decimal = Field(ge=0)


class RateDoc(_Doc):
    metric_type: MetricType
    unit_price: Decimal | None = Field(default=None, ge=0)
    tiers: list[TierDoc] = Field(default_factory=list)
    unit: str = ""

    @model_validator(mode="after")
    def _flat_or_tiered(self) -> "RateDoc":
        if (self.unit_price is None) == (not self.tiers):
            msg = f"rate for {self.metric_type.value} needs exactly one of unit_price or tiers"
            raise ValueError(msg)
        return self


class LimitsDoc(_Doc):
    storage_limit_bytes: int = Field(default=0, ge=0)
    bandwidth_limit_bytes: int = Field(default=0, ge=0)
    video_limit: int = Field(default=0, ge=0)
    user_limit: int = Field(default=0, ge=0)
    api_calls_limit: int = Field(default=0, ge=0)


class PlanDoc(_Doc):
    base_price: Decimal = Field(ge=0)
    currency: str = "USD"
    limits: LimitsDoc = Field(default_factory=LimitsDoc)
    rates: list[RateDoc] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_rates(self) -> "PlanDoc":
        seen = [r.metric_type for r in self.rates]
        if len(seen) != len(set(seen)):
            msg = "a plan may define at most one rate per metric"
            raise ValueError(msg)
        return self


class MultiplierDoc(_Doc):
    name: str = Field(min_length=1)
    metric_type: MetricType
    multiplier: Decimal = Field(gt=0)
    conditions: list[ConditionDoc] = Field(default_factory=list)
    is_active: bool = True


class CatalogDoc(_Doc):
    plans: dict[str, PlanDoc]
    multipliers: list[MultiplierDoc] = Field(default_factory=list)


# ── Catalog ──────────────────────────────────────────────────────

class BillingCatalog:
    """Plans and multipliers in effect for a billing run."""

    def __init__(
        self,
        plans: dict[str, Plan],
        multipliers: tuple[UsageMultiplier, ...] = (),
    ) -> None:
        self._plans = plans
        self._multipliers = multipliers

    @property
    def plans(self) -> dict[str, Plan]:
        return dict(self._plans)

    @property
    def multipliers(self) -> tuple[UsageMultiplier, ...]:
        return self._multipliers

    def plan_for(self, tenant: Tenant) -> Plan:
        plan = self._plans.get(tenant.plan.value)
        if plan is None:
            msg = f"no plan configured for tier '{tenant.plan.value}'"
            raise InvalidBillingConfiguration(
                msg, context={"tenant_id": tenant.tenant_id, "plan": tenant.plan.value}
            )
        return plan


def _to_condition(doc: PlanTierEqualsDoc | RegionInDoc | TenantIdInDoc) -> MultiplierCondition:
    if isinstance(doc, PlanTierEqualsDoc):
        return PlanTierEquals(tier=doc.tier)
    if isinstance(doc, RegionInDoc):
        return RegionIn(regions=frozenset(doc.regions))
    return TenantIdIn(tenant_ids=frozenset(doc.tenant_ids))


def _to_plan(slug: str, doc: PlanDoc) -> Plan:
    rates: dict[MetricType, OverageRate] = {}
    for rate_doc in doc.rates:
        tiers = tuple(
            Tier(upper_bound=t.upper_bound, price_per_unit=t.price_per_unit)
            for t in rate_doc.tiers
        )
        validate_tiers(tiers)
        rates[rate_doc.metric_type] = OverageRate(
            metric_type=rate_doc.metric_type,
            unit_price=rate_doc.unit_price,
            tiers=tiers,
            currency=doc.currency,
            unit=rate_doc.unit or rate_doc.metric_type.unit,
        )

    return Plan(
        slug=slug,
        base_price=doc.base_price,
        currency=doc.currency.upper(),
        limits=PlanLimits(**doc.limits.model_dump()),
        rates=rates,
    )


def parse_catalog(raw: dict[str, Any]) -> BillingCatalog:
    """Validate a raw catalog mapping and build a BillingCatalog."""
    try:
        doc = CatalogDoc.model_validate(raw)
    except ValidationError as exc:
        msg = f"invalid billing catalog: {exc.error_count()} error(s)"
        raise InvalidBillingConfiguration(
            msg, context={"errors": exc.errors(include_url=False)}
        ) from exc

    plans = {slug: _to_plan(slug, plan_doc) for slug, plan_doc in doc.plans.items()}
    multipliers = tuple(
        UsageMultiplier(
            name=m.name,
            metric_type=m.metric_type,
            multiplier=m.multiplier,
            conditions=tuple(_to_condition(c) for c in m.conditions),
            is_active=m.is_active,
        )
        for m in doc.multipliers
    )

    log.info("billing_catalog_loaded", plans=sorted(plans), multipliers=len(multipliers))
    return BillingCatalog(plans=plans, multipliers=multipliers)


def load_catalog(path: Path) -> BillingCatalog:
    """Load and validate the billing catalog YAML file."""
    try:
        with path.open(encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except (OSError, yaml.YAMLError) as exc:
        msg = f"cannot read billing catalog {path}: {exc}"
        raise InvalidBillingConfiguration(msg, context={"path": str(path)}) from exc

    if not isinstance(raw, dict):
        msg = f"billing catalog {path} must be a mapping"
        raise InvalidBillingConfiguration(msg, context={"path": str(path)})

    return parse_catalog(raw)
