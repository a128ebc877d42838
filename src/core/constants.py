"""System-wide constants. All magic numbers and strings live here."""

from __future__ import annotations

# ── Units ────────────────────────────────────────────────────────
BYTES_PER_GIB = 1024 * 1024 * 1024
UNIT_GIB = "GiB"
UNIT_VIDEO = "video"
UNIT_USER = "user"
UNIT_CALL = "call"
UNIT_VIEW = "view"

# ── Currency ─────────────────────────────────────────────────────
DEFAULT_CURRENCY = "USD"
DEFAULT_MINOR_UNITS = 2
CURRENCY_MINOR_UNITS: dict[str, int] = {
    "USD": 2,
    "EUR": 2,
    "GBP": 2,
    "CAD": 2,
    "AUD": 2,
    "JPY": 0,
    "KRW": 0,
}

# ── Subscriptions ────────────────────────────────────────────────
BILLABLE_SUBSCRIPTION_STATUSES = frozenset({"active", "trialing"})

# ── Invoices ─────────────────────────────────────────────────────
DEFAULT_INVOICE_DUE_DAYS = 30

# ── Billing Runs ─────────────────────────────────────────────────
DEFAULT_BILLING_CONCURRENCY = 8

# ── Payment Queue ────────────────────────────────────────────────
PAYMENT_REQUEST_QUEUE_KEY = "svb:payment_requests"

# ── Usage Event Types ────────────────────────────────────────────
EVENT_VIDEO_UPLOADED = "video_uploaded"
EVENT_VIDEO_VIEWED = "video_viewed"
EVENT_API_CALL = "api_call"
EVENT_USER_ACTIVE = "user_active"
