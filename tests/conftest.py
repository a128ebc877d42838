"""Pytest configuration and compatibility helpers.

This project includes async tests marked with ``@pytest.mark.asyncio``.
Some environments run unit tests without ``pytest-asyncio`` installed, which
would otherwise make those tests fail at collection/runtime.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any

import pytest


def pytest_configure(config: pytest.Config) -> None:
    """Register local markers used in the suite."""
    config.addinivalue_line("markers", "asyncio: mark test as asyncio-compatible")


def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Run ``@pytest.mark.asyncio`` tests without external plugins.

    If pytest-asyncio (or another async plugin) is installed, this hook may be
    bypassed by that plugin depending on hook ordering. In plugin-less
    environments, this fallback executes coroutine tests via ``asyncio.run``.
    """
    if pyfuncitem.get_closest_marker("asyncio") is None:
        return None

    test_func = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_func):
        return None

    kwargs: dict[str, Any] = {
        arg: pyfuncitem.funcargs[arg]
        for arg in pyfuncitem._fixtureinfo.argnames
    }
    loop = asyncio.new_event_loop()
    try:
        asyncio.set_event_loop(loop)
        loop.run_until_complete(test_func(**kwargs))
    finally:
        loop.close()
        # Keep a default loop available for sync tests that call
        # ``asyncio.get_event_loop()`` directly.
        asyncio.set_event_loop(asyncio.new_event_loop())
    return True


# ── Billing fixtures ─────────────────────────────────────────────

from dataclasses import dataclass  # noqa: E402
from datetime import datetime, timezone  # noqa: E402

from src.billing.catalog import BillingCatalog, parse_catalog  # noqa: E402
from src.billing.memory import InMemoryInvoiceStore, InMemorySnapshotStore  # noqa: E402
from src.billing.payments import InMemoryPaymentGateway  # noqa: E402
from src.billing.wiring import BillingServices, build_services  # noqa: E402
from src.core.constants import BYTES_PER_GIB  # noqa: E402
from src.core.types import TenantPlan  # noqa: E402
from src.saas.tenant import TenantManager  # noqa: E402
from src.saas.usage import UsageLedger  # noqa: E402

GIB = BYTES_PER_GIB
PERIOD_START = datetime(2026, 9, 1, tzinfo=timezone.utc)
PERIOD_END = datetime(2026, 10, 1, tzinfo=timezone.utc)


def catalog_doc(multipliers: list[dict[str, Any]] | None = None) -> dict[str, Any]:
    """Small catalog: pro has flat storage, tiered bandwidth and flat video rates."""
    return {
        "plans": {
            "pro": {
                "base_price": "99.00",
                "currency": "USD",
                "limits": {
                    "storage_limit_bytes": 100 * GIB,
                    "bandwidth_limit_bytes": 0,
                    "video_limit": 10,
                    "user_limit": 5,
                    "api_calls_limit": 1000,
                },
                "rates": [
                    {"metric_type": "storage", "unit_price": "0.10"},
                    {
                        "metric_type": "bandwidth",
                        "tiers": [
                            {"upper_bound": "50", "price_per_unit": "0.05"},
                            {"price_per_unit": "0.03"},
                        ],
                    },
                    {"metric_type": "video_count", "unit_price": "0.50"},
                ],
            },
            "starter": {
                "base_price": "19.00",
                "limits": {"storage_limit_bytes": 10 * GIB},
                "rates": [{"metric_type": "storage", "unit_price": "0.20"}],
            },
        },
        "multipliers": multipliers or [],
    }


@dataclass
class BillingHarness:
    tenants: TenantManager
    ledger: UsageLedger
    snapshots: InMemorySnapshotStore
    invoices: InMemoryInvoiceStore
    gateway: InMemoryPaymentGateway
    catalog: BillingCatalog
    services: BillingServices


def make_harness(
    catalog: BillingCatalog | None = None,
    *,
    tenants: TenantManager | None = None,
    ledger: UsageLedger | None = None,
    invoices: InMemoryInvoiceStore | None = None,
) -> BillingHarness:
    tenants = tenants or TenantManager()
    ledger = ledger or UsageLedger()
    snapshots = InMemorySnapshotStore()
    invoices = invoices or InMemoryInvoiceStore()
    gateway = InMemoryPaymentGateway()
    catalog = catalog or parse_catalog(catalog_doc())
    services = build_services(
        directory=tenants,
        feed=ledger,
        snapshots=snapshots,
        invoices=invoices,
        gateway=gateway,
        catalog=catalog,
    )
    return BillingHarness(tenants, ledger, snapshots, invoices, gateway, catalog, services)


@pytest.fixture()
def harness() -> BillingHarness:
    """In-memory billing stack with one pro tenant, 'acme', in us-east."""
    h = make_harness()
    h.tenants.create_tenant("acme", "Acme Video", plan=TenantPlan.PRO, region="us-east")
    return h
