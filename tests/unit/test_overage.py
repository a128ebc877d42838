"""Tests for overage pricing — flat, graduated tiers, multipliers, rounding."""

from __future__ import annotations

from decimal import Decimal

import pytest

from src.billing.multipliers import MultiplierResolver
from src.billing.overage import (
    OverageCalculator,
    allocate_tiers,
    compute_overage,
    round_money,
    to_billing_units,
    validate_tiers,
)
from src.core.constants import BYTES_PER_GIB
from src.core.exceptions import InvalidBillingConfiguration
from src.core.types import (
    MetricType,
    OverageRate,
    Tenant,
    TenantPlan,
    Tier,
    UsageMultiplier,
)


def _flat(price: str, metric: MetricType = MetricType.STORAGE) -> OverageRate:
    return OverageRate(metric_type=metric, unit_price=Decimal(price))


def _tiered(*tiers: tuple[str | None, str], metric: MetricType = MetricType.BANDWIDTH) -> OverageRate:
    return OverageRate(
        metric_type=metric,
        tiers=tuple(
            Tier(upper_bound=None if b is None else Decimal(b), price_per_unit=Decimal(p))
            for b, p in tiers
        ),
    )


class TestFlatRate:
    def test_storage_overage_at_ten_cents(self) -> None:
        charge = compute_overage(
            MetricType.STORAGE, Decimal(150), Decimal(100), _flat("0.10")
        )
        assert charge.adjusted_usage == Decimal(150)
        assert charge.overage_quantity == Decimal(50)
        assert charge.overage_cost == Decimal("5.00")
        assert str(charge.overage_cost) == "5.00"

    @pytest.mark.parametrize("multiplier", ["0.5", "1", "2"])
    def test_usage_at_or_below_limit_is_free(self, multiplier: str) -> None:
        charge = compute_overage(
            MetricType.STORAGE,
            Decimal(50),
            Decimal(100),
            _flat("0.10"),
            multiplier=Decimal(multiplier),
        )
        assert charge.overage_quantity == 0
        assert charge.overage_cost == 0

    def test_usage_exactly_at_limit(self) -> None:
        charge = compute_overage(MetricType.STORAGE, Decimal(100), Decimal(100), _flat("0.10"))
        assert charge.overage_quantity == 0
        assert charge.overage_cost == Decimal("0.00")

    def test_zero_limit_means_no_allowance(self) -> None:
        charge = compute_overage(MetricType.VIDEO_COUNT, Decimal(3), Decimal(0), _flat("0.50"))
        assert charge.overage_quantity == Decimal(3)
        assert charge.overage_cost == Decimal("1.50")

    def test_no_rate_charges_nothing(self) -> None:
        charge = compute_overage(MetricType.VIEWS, Decimal(1000), Decimal(0), None)
        assert charge.overage_quantity == Decimal(1000)
        assert charge.overage_cost == 0
        assert charge.rate is None


class TestMultiplierOrdering:
    def test_discount_eliminates_overage(self) -> None:
        charge = compute_overage(
            MetricType.STORAGE,
            Decimal(180),
            Decimal(100),
            _flat("0.10"),
            multiplier=Decimal("0.5"),
        )
        assert charge.adjusted_usage == Decimal(90)
        assert charge.overage_quantity == 0
        assert charge.overage_cost == 0

    def test_multiplier_applies_to_usage_not_overage(self) -> None:
        # (150 * 2) - 100 = 200, not (150 - 100) * 2 = 100
        charge = compute_overage(
            MetricType.STORAGE,
            Decimal(150),
            Decimal(100),
            _flat("1"),
            multiplier=Decimal(2),
        )
        assert charge.overage_quantity == Decimal(200)
        assert charge.overage_cost == Decimal("200.00")


class TestTieredRate:
    def test_graduated_bandwidth_tiers(self) -> None:
        rate = _tiered(("50", "0.05"), (None, "0.03"))
        charge = compute_overage(MetricType.BANDWIDTH, Decimal(80), Decimal(0), rate)

        assert charge.overage_quantity == Decimal(80)
        assert charge.overage_cost == Decimal("3.40")
        assert [t.quantity for t in charge.tier_charges] == [Decimal(50), Decimal(30)]
        assert [t.cost for t in charge.tier_charges] == [Decimal("2.50"), Decimal("0.90")]

    def test_quantity_inside_first_tier(self) -> None:
        rate = _tiered(("50", "0.05"), (None, "0.03"))
        charge = compute_overage(MetricType.BANDWIDTH, Decimal(20), Decimal(0), rate)
        assert charge.overage_cost == Decimal("1.00")
        assert len(charge.tier_charges) == 1

    def test_tiers_partition_overage_not_total_usage(self) -> None:
        rate = _tiered(("50", "0.05"), (None, "0.03"))
        charge = compute_overage(MetricType.BANDWIDTH, Decimal(530), Decimal(500), rate)
        # 30 units of overage all fall in the first tier
        assert charge.overage_cost == Decimal("1.50")

    def test_last_tier_is_unbounded_even_with_a_bound(self) -> None:
        rate = _tiered(("50", "0.05"), ("100", "0.03"))
        charge = compute_overage(MetricType.BANDWIDTH, Decimal(200), Decimal(0), rate)
        assert charge.overage_cost == Decimal("7.00")

    def test_matches_weighted_average_flat_rate(self) -> None:
        tiers = (("10", "1.00"), ("40", "0.50"), (None, "0.25"))
        rate = _tiered(*tiers)
        quantity = Decimal(100)

        tiered = compute_overage(MetricType.BANDWIDTH, quantity, Decimal(0), rate)

        slices = allocate_tiers(quantity, rate.tiers)
        weighted = sum(q * t.price_per_unit for t, q in slices) / sum(q for _, q in slices)
        flat = compute_overage(
            MetricType.BANDWIDTH, quantity, Decimal(0), _flat(str(weighted), MetricType.BANDWIDTH)
        )

        assert tiered.overage_cost == Decimal("40.00")
        assert flat.overage_cost == tiered.overage_cost

    def test_zero_overage_has_no_tier_lines(self) -> None:
        rate = _tiered(("50", "0.05"), (None, "0.03"))
        charge = compute_overage(MetricType.BANDWIDTH, Decimal(10), Decimal(10), rate)
        assert charge.tier_charges == ()
        assert charge.overage_cost == 0


class TestValidation:
    def test_negative_usage_rejected(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            compute_overage(MetricType.STORAGE, Decimal(-1), Decimal(0), _flat("0.10"))

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            compute_overage(MetricType.STORAGE, Decimal(1), Decimal(-5), _flat("0.10"))

    def test_non_monotonic_tiers_rejected(self) -> None:
        rate = _tiered(("50", "0.05"), ("40", "0.04"), (None, "0.03"))
        with pytest.raises(InvalidBillingConfiguration):
            compute_overage(MetricType.BANDWIDTH, Decimal(80), Decimal(0), rate)

    def test_unbounded_middle_tier_rejected(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            validate_tiers(
                (
                    Tier(upper_bound=None, price_per_unit=Decimal("0.05")),
                    Tier(upper_bound=None, price_per_unit=Decimal("0.03")),
                )
            )

    def test_zero_first_bound_rejected(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            validate_tiers((Tier(upper_bound=Decimal(0), price_per_unit=Decimal("1")),))

    def test_negative_tier_price_rejected(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            validate_tiers((Tier(upper_bound=None, price_per_unit=Decimal("-0.01")),))


class TestMoney:
    def test_round_half_up_to_cents(self) -> None:
        assert round_money(Decimal("0.005")) == Decimal("0.01")
        assert round_money(Decimal("0.004")) == Decimal("0.00")

    def test_zero_decimal_currency(self) -> None:
        assert round_money(Decimal("10.5"), "JPY") == Decimal("11")

    def test_cost_rounded_per_metric(self) -> None:
        charge = compute_overage(MetricType.API_CALLS, Decimal(1), Decimal(0), _flat("0.005"))
        assert charge.overage_cost == Decimal("0.01")

    def test_bytes_converted_to_gib(self) -> None:
        assert to_billing_units(MetricType.STORAGE, 150 * BYTES_PER_GIB) == Decimal(150)
        assert to_billing_units(MetricType.VIDEO_COUNT, 7) == Decimal(7)


class TestOverageCalculator:
    def test_uses_resolved_multiplier(self) -> None:
        tenant = Tenant(tenant_id="t1", name="T", plan=TenantPlan.PRO)
        resolver = MultiplierResolver(
            [UsageMultiplier(name="half", metric_type=MetricType.STORAGE, multiplier=Decimal("0.5"))]
        )
        calc = OverageCalculator(resolver)

        charge = calc.compute(tenant, MetricType.STORAGE, Decimal(180), Decimal(100), _flat("0.10"))
        assert charge.multiplier == Decimal("0.5")
        assert charge.overage_cost == 0

        other = calc.compute(tenant, MetricType.BANDWIDTH, Decimal(180), Decimal(100), _flat("0.10"))
        assert other.multiplier == Decimal(1)
        assert other.overage_cost == Decimal("8.00")
