"""Usage multiplier resolution — at most one active multiplier per (tenant, metric)."""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from src.core.exceptions import AmbiguousMultiplier
from src.core.logging import get_logger
from src.core.types import MetricType, Tenant, UsageMultiplier

log = get_logger(__name__)

NO_ADJUSTMENT = Decimal(1)


class MultiplierResolver:
    """Selects the multiplier matching a tenant's attributes for a metric.

    Overlapping matches are a configuration error and are never resolved
    by precedence.
    """

    def __init__(self, multipliers: Sequence[UsageMultiplier]) -> None:
        self._multipliers = tuple(multipliers)

    def matching(self, tenant: Tenant, metric: MetricType) -> list[UsageMultiplier]:
        return [m for m in self._multipliers if m.applies_to(tenant, metric)]

    def resolve(self, tenant: Tenant, metric: MetricType) -> Decimal:
        matches = self.matching(tenant, metric)

        if not matches:
            return NO_ADJUSTMENT

        if len(matches) > 1:
            names = sorted(m.name for m in matches)
            log.error(
                "ambiguous_multiplier",
                tenant_id=tenant.tenant_id,
                metric=metric.value,
                multipliers=names,
            )
            msg = (
                f"{len(matches)} active multipliers match tenant "
                f"'{tenant.tenant_id}' for {metric.value}: {', '.join(names)}"
            )
            raise AmbiguousMultiplier(
                msg,
                context={
                    "tenant_id": tenant.tenant_id,
                    "metric": metric.value,
                    "multipliers": names,
                },
            )

        return matches[0].multiplier
