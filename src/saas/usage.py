"""In-memory usage ledger — raw usage events and range-scoped counters.

Tracks:
- Video uploads (file size in bytes)
- Video views (served file size in bytes, viewer id)
- API calls
- Active users
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

from src.core.constants import (
    EVENT_API_CALL,
    EVENT_USER_ACTIVE,
    EVENT_VIDEO_UPLOADED,
    EVENT_VIDEO_VIEWED,
)
from src.core.interfaces import BaseUsageFeed
from src.core.logging import get_logger
from src.core.types import UsageCounters

log = get_logger(__name__)


@dataclass
class UsageRecord:
    """Single usage event."""

    tenant_id: str
    event_type: str  # "video_uploaded" | "video_viewed" | "api_call" | "user_active"
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    quantity: int = 1
    subject_id: str = ""  # video id, viewer id or user id depending on event_type
    metadata: dict[str, str] = field(default_factory=dict)


class UsageLedger(BaseUsageFeed):
    """Records usage events and reduces them to counters for a time range."""

    def __init__(self) -> None:
        self._records: dict[str, list[UsageRecord]] = {}

    def record(self, event: UsageRecord) -> None:
        """Record a usage event."""
        if event.quantity < 0:
            msg = f"usage quantity cannot be negative: {event.quantity}"
            raise ValueError(msg)
        self._records.setdefault(event.tenant_id, []).append(event)

        log.debug(
            "usage_recorded",
            tenant_id=event.tenant_id,
            event_type=event.event_type,
            quantity=event.quantity,
        )

    async def fetch_counters(
        self,
        tenant_id: str,
        period_start: datetime,
        period_end: datetime,
    ) -> UsageCounters:
        storage_bytes = 0
        bandwidth_bytes = 0
        api_calls = 0
        view_count = 0
        videos: set[str] = set()
        viewers: set[str] = set()
        users: set[str] = set()
        anonymous_uploads = 0

        for event in self._records.get(tenant_id, []):
            if not (period_start <= event.timestamp < period_end):
                continue

            if event.event_type == EVENT_VIDEO_UPLOADED:
                storage_bytes += event.quantity
                if event.subject_id:
                    videos.add(event.subject_id)
                else:
                    anonymous_uploads += 1
            elif event.event_type == EVENT_VIDEO_VIEWED:
                # Served file size per view, not bytes actually transferred.
                bandwidth_bytes += event.quantity
                view_count += 1
                if event.subject_id:
                    viewers.add(event.subject_id)
            elif event.event_type == EVENT_API_CALL:
                api_calls += event.quantity
            elif event.event_type == EVENT_USER_ACTIVE:
                if event.subject_id:
                    users.add(event.subject_id)

        return UsageCounters(
            storage_bytes=storage_bytes,
            bandwidth_bytes=bandwidth_bytes,
            video_count=len(videos) + anonymous_uploads,
            view_count=view_count,
            unique_viewers=len(viewers),
            user_count=len(users),
            api_calls=api_calls,
        )

    def get_all_records(self, tenant_id: str, limit: int = 100) -> list[UsageRecord]:
        """Get recent usage records for a tenant."""
        return self._records.get(tenant_id, [])[-limit:]
