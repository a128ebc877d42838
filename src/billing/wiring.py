"""Assembly of billing components over a given set of stores."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from src.billing.aggregator import UsagePeriodAggregator
from src.billing.catalog import BillingCatalog
from src.billing.invoice import InvoiceComposer
from src.billing.payments import PaymentRequestDispatcher
from src.billing.runner import BillingRunner
from src.core.constants import DEFAULT_BILLING_CONCURRENCY, DEFAULT_INVOICE_DUE_DAYS
from src.core.interfaces import (
    BaseInvoiceStore,
    BasePaymentGateway,
    BaseSnapshotStore,
    BaseTenantDirectory,
    BaseUsageFeed,
)


@dataclass
class BillingServices:
    directory: BaseTenantDirectory
    catalog: BillingCatalog
    aggregator: UsagePeriodAggregator
    composer: InvoiceComposer
    dispatcher: PaymentRequestDispatcher
    runner: BillingRunner


def build_services(
    *,
    directory: BaseTenantDirectory,
    feed: BaseUsageFeed,
    snapshots: BaseSnapshotStore,
    invoices: BaseInvoiceStore,
    gateway: BasePaymentGateway,
    catalog: BillingCatalog,
    due_days: int = DEFAULT_INVOICE_DUE_DAYS,
    concurrency: int = DEFAULT_BILLING_CONCURRENCY,
) -> BillingServices:
    aggregator = UsagePeriodAggregator(directory, feed, snapshots)
    composer = InvoiceComposer(directory, catalog, aggregator, invoices, due_days=due_days)
    dispatcher = PaymentRequestDispatcher(gateway, invoices)
    runner = BillingRunner(directory, aggregator, composer, dispatcher, concurrency=concurrency)
    return BillingServices(
        directory=directory,
        catalog=catalog,
        aggregator=aggregator,
        composer=composer,
        dispatcher=dispatcher,
        runner=runner,
    )


def build_sql_services(
    engine: AsyncEngine,
    gateway: BasePaymentGateway,
    catalog: BillingCatalog,
    *,
    due_days: int = DEFAULT_INVOICE_DUE_DAYS,
    concurrency: int = DEFAULT_BILLING_CONCURRENCY,
) -> BillingServices:
    """Wire the engine against the PostgreSQL stores."""
    from src.data.billing_repo import SqlInvoiceStore, SqlSnapshotStore
    from src.data.tenants import TenantRepository
    from src.data.usage_feed import SqlUsageFeed

    return build_services(
        directory=TenantRepository(engine),
        feed=SqlUsageFeed(engine),
        snapshots=SqlSnapshotStore(engine),
        invoices=SqlInvoiceStore(engine),
        gateway=gateway,
        catalog=catalog,
        due_days=due_days,
        concurrency=concurrency,
    )
