"""Usage metering and tiered overage billing engine."""

from src.billing.aggregator import UsagePeriodAggregator
from src.billing.catalog import BillingCatalog, load_catalog, parse_catalog
from src.billing.invoice import InvoiceComposer
from src.billing.multipliers import MultiplierResolver
from src.billing.overage import OverageCalculator, compute_overage
from src.billing.payments import PaymentRequestDispatcher
from src.billing.runner import BillingRunner, previous_month_period

__all__ = [
    "BillingCatalog",
    "BillingRunner",
    "InvoiceComposer",
    "MultiplierResolver",
    "OverageCalculator",
    "PaymentRequestDispatcher",
    "UsagePeriodAggregator",
    "compute_overage",
    "load_catalog",
    "parse_catalog",
    "previous_month_period",
]
