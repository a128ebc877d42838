"""Overage calculation — flat and graduated-tier pricing over adjusted usage.

All quantities and money use ``Decimal``. The multiplier is applied to raw
usage before the included limit is subtracted, and each metric's cost is
rounded to the currency's minor unit before any summation.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Sequence

from src.core.constants import (
    BYTES_PER_GIB,
    CURRENCY_MINOR_UNITS,
    DEFAULT_CURRENCY,
    DEFAULT_MINOR_UNITS,
)
from src.core.exceptions import InvalidBillingConfiguration
from src.core.logging import get_logger
from src.core.types import MetricCharge, MetricType, OverageRate, Tenant, Tier, TierCharge

if TYPE_CHECKING:
    from src.billing.multipliers import MultiplierResolver

log = get_logger(__name__)

_ZERO = Decimal(0)
_ONE = Decimal(1)


def to_billing_units(metric: MetricType, raw: int | Decimal) -> Decimal:
    """Convert a raw counter into the unit its rate is priced in (GiB for bytes)."""
    value = Decimal(raw)
    if metric.is_byte_metric:
        return value / Decimal(BYTES_PER_GIB)
    return value


def round_money(amount: Decimal, currency: str = DEFAULT_CURRENCY) -> Decimal:
    """Round to the currency's minor unit, half away from zero."""
    places = CURRENCY_MINOR_UNITS.get(currency.upper(), DEFAULT_MINOR_UNITS)
    return amount.quantize(_ONE.scaleb(-places), rounding=ROUND_HALF_UP)


def validate_tiers(tiers: Sequence[Tier]) -> None:
    """Raise InvalidBillingConfiguration unless bounds strictly increase from zero."""
    previous = _ZERO
    last_index = len(tiers) - 1
    for index, tier in enumerate(tiers):
        if tier.price_per_unit < 0:
            msg = f"tier {index} has a negative price"
            raise InvalidBillingConfiguration(msg, context={"tier": tier.to_dict()})
        if tier.upper_bound is None:
            if index != last_index:
                msg = f"only the last tier may be unbounded (tier {index})"
                raise InvalidBillingConfiguration(msg, context={"tier": tier.to_dict()})
            continue
        if tier.upper_bound <= previous:
            msg = f"tier upper bounds must strictly increase (tier {index})"
            raise InvalidBillingConfiguration(
                msg,
                context={"upper_bound": str(tier.upper_bound), "previous": str(previous)},
            )
        previous = tier.upper_bound


def allocate_tiers(quantity: Decimal, tiers: Sequence[Tier]) -> list[tuple[Tier, Decimal]]:
    """Split an overage quantity across graduated tiers.

    Each slice is ``min(quantity, bound) - previous_bound``; the last tier
    absorbs everything past the previous bound.
    """
    validate_tiers(tiers)
    slices: list[tuple[Tier, Decimal]] = []
    previous = _ZERO
    last_index = len(tiers) - 1

    for index, tier in enumerate(tiers):
        if quantity <= previous:
            break
        bound = None if index == last_index else tier.upper_bound
        upper = quantity if bound is None else min(quantity, bound)
        in_tier = max(_ZERO, upper - previous)
        if in_tier > 0:
            slices.append((tier, in_tier))
        if bound is None:
            break
        previous = bound

    return slices


def compute_overage(
    metric: MetricType,
    raw_usage: Decimal,
    limit: Decimal,
    rate: OverageRate | None,
    *,
    multiplier: Decimal = _ONE,
    currency: str = DEFAULT_CURRENCY,
) -> MetricCharge:
    """Price one metric. ``raw_usage`` and ``limit`` are in billing units."""
    if raw_usage < 0:
        msg = f"negative usage for {metric.value}"
        raise InvalidBillingConfiguration(msg, context={"raw_usage": str(raw_usage)})
    if limit < 0:
        msg = f"negative limit for {metric.value}"
        raise InvalidBillingConfiguration(msg, context={"limit": str(limit)})
    if multiplier <= 0:
        msg = f"multiplier for {metric.value} must be positive"
        raise InvalidBillingConfiguration(msg, context={"multiplier": str(multiplier)})

    adjusted = raw_usage * multiplier
    overage_quantity = max(_ZERO, adjusted - limit)

    tier_charges: list[TierCharge] = []
    if rate is None:
        cost = _ZERO
    elif rate.is_tiered:
        cost = _ZERO
        for tier, quantity in allocate_tiers(overage_quantity, rate.tiers):
            slice_cost = quantity * tier.price_per_unit
            cost += slice_cost
            tier_charges.append(
                TierCharge(
                    upper_bound=tier.upper_bound,
                    price_per_unit=tier.price_per_unit,
                    quantity=quantity,
                    cost=slice_cost,
                )
            )
    else:
        unit_price = rate.unit_price if rate.unit_price is not None else _ZERO
        if unit_price < 0:
            msg = f"negative unit price for {metric.value}"
            raise InvalidBillingConfiguration(msg, context={"unit_price": str(unit_price)})
        cost = overage_quantity * unit_price

    return MetricCharge(
        metric_type=metric,
        unit=rate.unit if rate is not None and rate.unit else metric.unit,
        raw_usage=raw_usage,
        multiplier=multiplier,
        adjusted_usage=adjusted,
        included=limit,
        overage_quantity=overage_quantity,
        overage_cost=round_money(cost, currency),
        rate=rate.to_dict() if rate is not None else None,
        tier_charges=tuple(tier_charges),
    )


class OverageCalculator:
    """Resolves the tenant's multiplier for a metric and prices its overage."""

    def __init__(self, resolver: MultiplierResolver) -> None:
        self._resolver = resolver

    def compute(
        self,
        tenant: Tenant,
        metric: MetricType,
        raw_usage: Decimal,
        limit: Decimal,
        rate: OverageRate | None,
        currency: str = DEFAULT_CURRENCY,
    ) -> MetricCharge:
        multiplier = self._resolver.resolve(tenant, metric)
        charge = compute_overage(
            metric,
            raw_usage,
            limit,
            rate,
            multiplier=multiplier,
            currency=currency,
        )
        if charge.overage_quantity > 0:
            log.debug(
                "overage_computed",
                tenant_id=tenant.tenant_id,
                metric=metric.value,
                overage_quantity=str(charge.overage_quantity),
                overage_cost=str(charge.overage_cost),
            )
        return charge
