"""Billing run orchestration — per-tenant, isolated, concurrent.

Each tenant goes through aggregate -> compose -> finalize -> dispatch. A fatal
error for one tenant is reported for operators and does not touch the others.
Re-running a period is safe: drafts are re-aggregated and recomputed, while a
period invoiced past draft keeps its snapshot and invoice untouched.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.billing.aggregator import UsagePeriodAggregator, validate_period
from src.billing.invoice import InvoiceComposer
from src.billing.payments import PaymentRequestDispatcher
from src.core.constants import DEFAULT_BILLING_CONCURRENCY
from src.core.exceptions import FATAL_BILLING_ERRORS, BillingBaseError
from src.core.interfaces import BaseTenantDirectory
from src.core.logging import get_logger
from src.core.types import InvoiceStatus, TenantInvoice

log = get_logger(__name__)


def previous_month_period(now: datetime | None = None) -> tuple[datetime, datetime]:
    """``[first of previous month, first of this month)`` in UTC."""
    now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    period_end = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    if now.month == 1:
        period_start = datetime(now.year - 1, 12, 1, tzinfo=timezone.utc)
    else:
        period_start = datetime(now.year, now.month - 1, 1, tzinfo=timezone.utc)
    return period_start, period_end


@dataclass
class TenantBillingOutcome:
    tenant_id: str
    succeeded: bool
    invoice: TenantInvoice | None = None
    error_type: str | None = None
    error: str | None = None
    fatal: bool = False


@dataclass
class BillingRunReport:
    period_start: datetime
    period_end: datetime
    outcomes: list[TenantBillingOutcome] = field(default_factory=list)

    @property
    def invoiced(self) -> list[TenantBillingOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> list[TenantBillingOutcome]:
        return [o for o in self.outcomes if not o.succeeded]


class BillingRunner:
    """Bills a period for many tenants with bounded concurrency."""

    def __init__(
        self,
        directory: BaseTenantDirectory,
        aggregator: UsagePeriodAggregator,
        composer: InvoiceComposer,
        dispatcher: PaymentRequestDispatcher,
        *,
        concurrency: int = DEFAULT_BILLING_CONCURRENCY,
    ) -> None:
        self._directory = directory
        self._aggregator = aggregator
        self._composer = composer
        self._dispatcher = dispatcher
        self._semaphore = asyncio.Semaphore(max(1, concurrency))

    async def bill_tenant(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantInvoice:
        """Run the whole pipeline for one tenant. Errors propagate.

        A period already invoiced past draft is not re-aggregated: its snapshot
        and breakdown stay as finalized, and only a pending payment request is
        retried.
        """
        invoice = await self._composer.find_invoice(tenant_id, period_start, period_end)
        if invoice is None or invoice.status == InvoiceStatus.DRAFT:
            await self._aggregator.aggregate(tenant_id, period_start, period_end)
            invoice = await self._composer.compose(tenant_id, period_start, period_end)
        else:
            log.info(
                "billing_run_tenant_already_invoiced",
                tenant_id=tenant_id,
                invoice_id=invoice.invoice_id,
                status=invoice.status.value,
            )
        if invoice.status == InvoiceStatus.DRAFT:
            invoice = await self._composer.finalize(invoice)
        if invoice.status == InvoiceStatus.FINALIZED:
            invoice = await self._dispatcher.dispatch(invoice)
        return invoice

    async def run(
        self,
        period_start: datetime,
        period_end: datetime,
        tenant_ids: list[str] | None = None,
    ) -> BillingRunReport:
        validate_period(period_start, period_end)

        if tenant_ids is None:
            tenant_ids = await self._directory.list_active_tenant_ids()

        log.info(
            "billing_run_started",
            period_start=period_start.isoformat(),
            period_end=period_end.isoformat(),
            tenants=len(tenant_ids),
        )

        tasks = [
            asyncio.create_task(
                self._bill_tenant_safe(tenant_id, period_start, period_end),
                name=f"billing_{tenant_id}",
            )
            for tenant_id in tenant_ids
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        report = BillingRunReport(period_start=period_start, period_end=period_end)
        for tenant_id, result in zip(tenant_ids, results):
            if isinstance(result, TenantBillingOutcome):
                report.outcomes.append(result)
            elif isinstance(result, BaseException):
                log.error("billing_run_tenant_crashed", tenant_id=tenant_id, error=str(result))
                report.outcomes.append(
                    TenantBillingOutcome(
                        tenant_id=tenant_id,
                        succeeded=False,
                        error_type=type(result).__name__,
                        error=str(result),
                    )
                )

        log.info(
            "billing_run_complete",
            period_start=period_start.isoformat(),
            invoiced=len(report.invoiced),
            failed=len(report.failed),
        )
        return report

    async def _bill_tenant_safe(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> TenantBillingOutcome:
        """Run one tenant under the semaphore and turn billing errors into outcomes."""
        async with self._semaphore:
            try:
                invoice = await self.bill_tenant(tenant_id, period_start, period_end)
            except BillingBaseError as exc:
                fatal = isinstance(exc, FATAL_BILLING_ERRORS)
                log.error(
                    "billing_run_tenant_failed",
                    tenant_id=tenant_id,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    fatal=fatal,
                    **{f"ctx_{k}": v for k, v in exc.context.items()},
                )
                return TenantBillingOutcome(
                    tenant_id=tenant_id,
                    succeeded=False,
                    error_type=type(exc).__name__,
                    error=str(exc),
                    fatal=fatal,
                )

        return TenantBillingOutcome(tenant_id=tenant_id, succeeded=True, invoice=invoice)
