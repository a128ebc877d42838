"""PostgreSQL connection and schema definitions."""

from __future__ import annotations

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from config.settings import get_settings
from src.core.logging import get_logger

log = get_logger(__name__)

metadata = MetaData()

# ── Upstream Usage Tables ────────────────────────────────────────

tenants = Table(
    "tenants",
    metadata,
    Column("tenant_id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("email", String, nullable=False, default=""),
    Column("plan", String, nullable=False, default="free"),
    Column("region", String, nullable=False, default=""),
    Column("subscription_status", String, nullable=False, default="active"),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
)

videos = Table(
    "videos",
    metadata,
    Column("video_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("file_size", BigInteger, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False, index=True),
)

video_views = Table(
    "video_views",
    metadata,
    Column("view_id", String, primary_key=True),
    Column("video_id", String, nullable=False, index=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("viewer_id", String, nullable=True),
    Column("viewed_at", DateTime(timezone=True), nullable=False, index=True),
)

api_call_events = Table(
    "api_call_events",
    metadata,
    Column("event_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("quantity", Integer, nullable=False, default=1),
    Column("occurred_at", DateTime(timezone=True), nullable=False, index=True),
)

tenant_user_activity = Table(
    "tenant_user_activity",
    metadata,
    Column("activity_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("user_id", String, nullable=False),
    Column("occurred_at", DateTime(timezone=True), nullable=False, index=True),
)

# ── Billing Tables ───────────────────────────────────────────────

tenant_usage_snapshots = Table(
    "tenant_usage_snapshots",
    metadata,
    Column("tenant_id", String, nullable=False),
    Column("period_start", DateTime(timezone=True), nullable=False),
    Column("period_end", DateTime(timezone=True), nullable=False),
    Column("storage_bytes", BigInteger, nullable=False),
    Column("bandwidth_bytes", BigInteger, nullable=False),
    Column("video_count", Integer, nullable=False),
    Column("view_count", Integer, nullable=False),
    Column("unique_viewers", Integer, nullable=False),
    Column("user_count", Integer, nullable=False),
    Column("api_calls", BigInteger, nullable=False),
    Column("captured_at", DateTime(timezone=True), nullable=False),
    UniqueConstraint("tenant_id", "period_start", name="uq_usage_snapshot_period"),
)

tenant_invoices = Table(
    "tenant_invoices",
    metadata,
    Column("invoice_id", String, primary_key=True),
    Column("tenant_id", String, nullable=False, index=True),
    Column("period_start", DateTime(timezone=True), nullable=False),
    Column("period_end", DateTime(timezone=True), nullable=False),
    Column("plan_slug", String, nullable=False),
    Column("base_amount", Numeric(18, 4), nullable=False),
    Column("overage_amount", Numeric(18, 4), nullable=False),
    Column("total_amount", Numeric(18, 4), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("usage_breakdown", JSONB, nullable=False),
    Column("status", String, nullable=False, index=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("finalized_at", DateTime(timezone=True)),
    Column("due_date", DateTime(timezone=True)),
    Column("payment_reference", String),
    UniqueConstraint("tenant_id", "period_start", "period_end", name="uq_invoice_period"),
)


# ── Engine ───────────────────────────────────────────────────────

_engine: AsyncEngine | None = None


async def get_engine() -> AsyncEngine:
    """Get or create the async database engine (singleton)."""
    global _engine  # noqa: PLW0603
    if _engine is None:
        settings = get_settings()
        db_url = settings.database_url.get_secret_value()
        _engine = create_async_engine(
            db_url,
            echo=False,
            pool_size=10,
            max_overflow=20,
        )
        log.info("database_engine_created", host=db_url.split("@")[-1].split("?")[0])
    return _engine


async def init_schema() -> None:
    """Create all tables."""
    engine = await get_engine()

    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

    log.info("schema_initialized", tables=sorted(metadata.tables))


async def close_engine() -> None:
    """Dispose the database engine."""
    global _engine  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        log.info("database_engine_closed")
