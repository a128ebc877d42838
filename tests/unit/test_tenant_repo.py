"""Tests for TenantRepository — DB-backed tenant lookup."""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import PERIOD_END, PERIOD_START, catalog_doc
from src.billing.catalog import parse_catalog
from src.billing.memory import InMemoryInvoiceStore, InMemorySnapshotStore
from src.billing.payments import InMemoryPaymentGateway
from src.billing.wiring import BillingServices, build_services
from src.core.exceptions import InvalidBillingConfiguration, TenantNotFound
from src.core.types import TenantPlan
from src.data.tenants import TenantRepository
from src.saas.usage import UsageLedger


class _FakeMapping(dict):  # type: ignore[type-arg]
    """Dict subclass standing in for a RowMapping."""
    pass


def _make_row(**kwargs: object) -> _FakeMapping:
    """Create a fake DB row mapping."""
    defaults = {
        "tenant_id": "t1",
        "name": "Test Tenant",
        "email": "billing@example.com",
        "plan": "free",
        "region": "us-east",
        "subscription_status": "active",
        "is_active": True,
        "created_at": datetime.now(timezone.utc),
    }
    defaults.update(kwargs)
    return _FakeMapping(defaults)


def _mock_engine(mock_conn: AsyncMock) -> MagicMock:
    """Create a mock engine with proper async context manager for begin()."""
    engine = MagicMock()

    @asynccontextmanager
    async def _begin() -> AsyncIterator[AsyncMock]:
        yield mock_conn

    engine.begin = _begin
    return engine


class TestRowToTenant:
    def test_basic_conversion(self) -> None:
        tenant = TenantRepository._row_to_tenant(_make_row())
        assert tenant.tenant_id == "t1"
        assert tenant.name == "Test Tenant"
        assert tenant.region == "us-east"
        assert tenant.plan == TenantPlan.FREE
        assert tenant.is_billable is True

    def test_pro_plan(self) -> None:
        tenant = TenantRepository._row_to_tenant(_make_row(plan="pro"))
        assert tenant.plan == TenantPlan.PRO

    def test_unknown_plan_is_configuration_error(self) -> None:
        with pytest.raises(InvalidBillingConfiguration) as exc_info:
            TenantRepository._row_to_tenant(_make_row(tenant_id="t9", plan="enterprize"))
        assert exc_info.value.context == {"tenant_id": "t9", "plan": "enterprize"}

    def test_null_plan_is_configuration_error(self) -> None:
        with pytest.raises(InvalidBillingConfiguration):
            TenantRepository._row_to_tenant(_make_row(plan=None))

    def test_null_optional_columns(self) -> None:
        tenant = TenantRepository._row_to_tenant(_make_row(email=None, region=None))
        assert tenant.email == ""
        assert tenant.region == ""

    @pytest.mark.parametrize("status", [None, ""])
    def test_missing_subscription_is_not_billable(self, status: str | None) -> None:
        tenant = TenantRepository._row_to_tenant(_make_row(subscription_status=status))
        assert tenant.is_billable is False

    def test_canceled_is_not_billable(self) -> None:
        tenant = TenantRepository._row_to_tenant(_make_row(subscription_status="canceled"))
        assert tenant.is_billable is False


class TestGetTenant:
    @pytest.mark.asyncio
    async def test_found(self) -> None:
        mock_result = MagicMock()
        mock_result.mappings.return_value.first.return_value = _make_row(tenant_id="found-id")

        mock_conn = AsyncMock()
        mock_conn.execute.return_value = mock_result

        repo = TenantRepository(_mock_engine(mock_conn))
        tenant = await repo.get_tenant("found-id")
        assert tenant is not None
        assert tenant.tenant_id == "found-id"

    @pytest.mark.asyncio
    async def test_not_found(self) -> None:
        mock_result = MagicMock()
        mock_result.mappings.return_value.first.return_value = None

        mock_conn = AsyncMock()
        mock_conn.execute.return_value = mock_result

        repo = TenantRepository(_mock_engine(mock_conn))
        assert await repo.get_tenant("no-such-id") is None


class TestListActiveTenants:
    @pytest.mark.asyncio
    async def test_returns_all_rows(self) -> None:
        mock_result = MagicMock()
        mock_result.mappings.return_value.all.return_value = [
            _make_row(tenant_id="a", plan="pro"),
            _make_row(tenant_id="b", plan="enterprise"),
        ]

        mock_conn = AsyncMock()
        mock_conn.execute.return_value = mock_result

        repo = TenantRepository(_mock_engine(mock_conn))
        tenants = await repo.list_active_tenants()

        assert [t.tenant_id for t in tenants] == ["a", "b"]
        assert tenants[1].plan == TenantPlan.ENTERPRISE
        sql = str(mock_conn.execute.call_args.args[0])
        assert "subscription_status IN" in sql


class TestListActiveTenantIds:
    @pytest.mark.asyncio
    async def test_selects_ids_only(self) -> None:
        mock_result = MagicMock()
        mock_result.mappings.return_value.all.return_value = [{"tenant_id": "a"}, {"tenant_id": "b"}]

        mock_conn = AsyncMock()
        mock_conn.execute.return_value = mock_result

        repo = TenantRepository(_mock_engine(mock_conn))
        assert await repo.list_active_tenant_ids() == ["a", "b"]
        sql = str(mock_conn.execute.call_args.args[0])
        assert sql.startswith("SELECT tenant_id FROM tenants")


# ── Billing over the SQL directory ───────────────────────────────

def _directory_engine(rows: dict[str, _FakeMapping]) -> MagicMock:
    """Engine answering id listings and lookups from ``rows``."""

    async def _execute(stmt: object, params: dict[str, str] | None = None) -> MagicMock:
        result = MagicMock()
        if str(stmt).startswith("SELECT tenant_id"):
            result.mappings.return_value.all.return_value = [{"tenant_id": tid} for tid in rows]
        else:
            result.mappings.return_value.first.return_value = rows.get((params or {}).get("tid", ""))
        return result

    mock_conn = AsyncMock()
    mock_conn.execute.side_effect = _execute
    return _mock_engine(mock_conn)


def _services(rows: dict[str, _FakeMapping]) -> tuple[BillingServices, InMemoryInvoiceStore]:
    invoices = InMemoryInvoiceStore()
    services = build_services(
        directory=TenantRepository(_directory_engine(rows)),
        feed=UsageLedger(),
        snapshots=InMemorySnapshotStore(),
        invoices=invoices,
        gateway=InMemoryPaymentGateway(),
        catalog=parse_catalog(catalog_doc()),
    )
    return services, invoices


class TestBillingOverRepository:
    @pytest.mark.asyncio
    async def test_misspelled_plan_is_never_invoiced(self) -> None:
        services, invoices = _services({"t1": _make_row(plan="enterprize")})

        with pytest.raises(InvalidBillingConfiguration):
            await services.composer.compose("t1", PERIOD_START, PERIOD_END)
        assert await invoices.list_for_tenant("t1") == []

    @pytest.mark.asyncio
    async def test_missing_subscription_is_never_invoiced(self) -> None:
        services, invoices = _services({"t1": _make_row(plan="pro", subscription_status=None)})

        with pytest.raises(TenantNotFound):
            await services.composer.compose("t1", PERIOD_START, PERIOD_END)
        assert await invoices.list_for_tenant("t1") == []

    @pytest.mark.asyncio
    async def test_bad_row_fails_only_its_tenant_in_a_run(self) -> None:
        services, _ = _services({
            "good": _make_row(tenant_id="good", plan="pro"),
            "typo": _make_row(tenant_id="typo", plan="enterprize"),
        })

        report = await services.runner.run(PERIOD_START, PERIOD_END)

        assert [o.tenant_id for o in report.invoiced] == ["good"]
        failed = report.failed[0]
        assert failed.tenant_id == "typo"
        assert failed.error_type == "InvalidBillingConfiguration"
        assert failed.fatal is True
