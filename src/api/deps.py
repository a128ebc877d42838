"""FastAPI dependency injection — shared instances for routes."""

from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncEngine

from config.settings import get_settings
from src.billing.catalog import BillingCatalog, load_catalog
from src.billing.payments import RedisPaymentQueue
from src.billing.wiring import BillingServices, build_sql_services
from src.data.db import get_engine

# ── Database engine ───────────────────────────────────────────────


async def get_db_engine() -> AsyncEngine:
    """Provide the async database engine."""
    return await get_engine()


# ── Billing catalog ───────────────────────────────────────────────

_catalog: BillingCatalog | None = None


def get_catalog() -> BillingCatalog:
    """Load the billing catalog once per process."""
    global _catalog  # noqa: PLW0603
    if _catalog is None:
        _catalog = load_catalog(get_settings().billing_config_path)
    return _catalog


# ── Payment gateway ───────────────────────────────────────────────

_gateway: RedisPaymentQueue | None = None


def get_payment_gateway() -> RedisPaymentQueue:
    global _gateway  # noqa: PLW0603
    if _gateway is None:
        _gateway = RedisPaymentQueue()
    return _gateway


async def close_payment_gateway() -> None:
    global _gateway  # noqa: PLW0603
    if _gateway is not None:
        await _gateway.close()
        _gateway = None


# ── Billing services ──────────────────────────────────────────────


async def get_billing_services(
    engine: AsyncEngine = Depends(get_db_engine),
    catalog: BillingCatalog = Depends(get_catalog),
    gateway: RedisPaymentQueue = Depends(get_payment_gateway),
) -> BillingServices:
    """Provide billing components wired against PostgreSQL and Redis."""
    settings = get_settings()
    return build_sql_services(
        engine,
        gateway,
        catalog,
        due_days=settings.invoice_due_days,
        concurrency=settings.billing_concurrency,
    )
