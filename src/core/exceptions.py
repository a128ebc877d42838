"""Custom exception hierarchy for the billing engine."""

from __future__ import annotations

from typing import Any


class BillingBaseError(Exception):
    """Base exception for all billing errors."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.context: dict[str, Any] = context or {}


# ── Input / Lookup ───────────────────────────────────────────────

class InvalidPeriod(BillingBaseError):
    """Billing period bounds are not a valid half-open range."""


class TenantNotFound(BillingBaseError):
    """Tenant does not exist or has no billable subscription."""


class InvoiceNotFound(BillingBaseError):
    """No invoice exists for the requested id."""


# ── Configuration ────────────────────────────────────────────────

class InvalidBillingConfiguration(BillingBaseError):
    """Plan limits, rates, tiers or multipliers are malformed."""


class AmbiguousMultiplier(BillingBaseError):
    """More than one active multiplier matches a (tenant, metric) pair."""


# ── Invoice Lifecycle ────────────────────────────────────────────

class ConcurrentInvoiceConflict(BillingBaseError):
    """Another writer persisted or advanced the same invoice first.

    Recovered locally by re-reading the stored invoice.
    """


class InvalidInvoiceTransition(BillingBaseError):
    """Requested status change is not allowed from the invoice's current status."""


class PaymentDispatchError(BillingBaseError):
    """Payment request could not be handed to the payment collaborator."""


FATAL_BILLING_ERRORS: tuple[type[BillingBaseError], ...] = (
    InvalidPeriod,
    TenantNotFound,
    InvalidBillingConfiguration,
    AmbiguousMultiplier,
)
