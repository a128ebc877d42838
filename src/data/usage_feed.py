"""SQL usage feed — per-tenant counters over ``[start, end)`` from upstream tables."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from src.core.interfaces import BaseUsageFeed
from src.core.types import UsageCounters

# Bandwidth is the served file size per view in the period, which overcounts
# partial plays and range requests. Kept as reported upstream.
_VIDEO_COUNTERS = text(
    "SELECT COALESCE(SUM(file_size), 0) AS storage_bytes, count(*) AS video_count "
    "FROM videos "
    "WHERE tenant_id = :tid AND created_at >= :start AND created_at < :end"
)

_VIEW_COUNTERS = text(
    "SELECT COALESCE(SUM(v.file_size), 0) AS bandwidth_bytes, "
    "count(*) AS view_count, "
    "count(DISTINCT vv.viewer_id) AS unique_viewers "
    "FROM video_views vv JOIN videos v ON v.video_id = vv.video_id "
    "WHERE vv.tenant_id = :tid AND vv.viewed_at >= :start AND vv.viewed_at < :end"
)

_API_CALLS = text(
    "SELECT COALESCE(SUM(quantity), 0) AS api_calls FROM api_call_events "
    "WHERE tenant_id = :tid AND occurred_at >= :start AND occurred_at < :end"
)

_ACTIVE_USERS = text(
    "SELECT count(DISTINCT user_id) AS user_count FROM tenant_user_activity "
    "WHERE tenant_id = :tid AND occurred_at >= :start AND occurred_at < :end"
)


class SqlUsageFeed(BaseUsageFeed):
    """Reads raw usage from the video, view, API-call and activity tables."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def fetch_counters(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> UsageCounters:
        params = {"tid": tenant_id, "start": period_start, "end": period_end}

        async with self._engine.begin() as conn:
            videos = (await conn.execute(_VIDEO_COUNTERS, params)).mappings().one()
            views = (await conn.execute(_VIEW_COUNTERS, params)).mappings().one()
            api_calls = (await conn.execute(_API_CALLS, params)).scalar() or 0
            user_count = (await conn.execute(_ACTIVE_USERS, params)).scalar() or 0

        return UsageCounters(
            storage_bytes=int(videos["storage_bytes"] or 0),
            bandwidth_bytes=int(views["bandwidth_bytes"] or 0),
            video_count=int(videos["video_count"] or 0),
            view_count=int(views["view_count"] or 0),
            unique_viewers=int(views["unique_viewers"] or 0),
            user_count=int(user_count),
            api_calls=int(api_calls),
        )
