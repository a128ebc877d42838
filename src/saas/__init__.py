"""SaaS multi-tenant layer — tenant directory and raw usage ledger."""

from src.saas.tenant import TenantManager
from src.saas.usage import UsageLedger, UsageRecord

__all__ = [
    "TenantManager",
    "UsageLedger",
    "UsageRecord",
]
