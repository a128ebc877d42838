"""Payment request hand-off and status callbacks from the payment collaborator.

The engine only emits charge requests and records the collaborator's
verdict; it never decides ``paid`` or ``failed`` itself.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

import redis.asyncio as aioredis

from config.settings import get_settings
from src.core.constants import PAYMENT_REQUEST_QUEUE_KEY
from src.core.exceptions import (
    ConcurrentInvoiceConflict,
    InvalidInvoiceTransition,
    InvoiceNotFound,
    PaymentDispatchError,
)
from src.core.interfaces import BaseInvoiceStore, BasePaymentGateway
from src.core.logging import get_logger
from src.core.types import InvoiceStatus, PaymentRequest, TenantInvoice

log = get_logger(__name__)

_CALLBACK_STATUSES = frozenset({InvoiceStatus.PAID, InvoiceStatus.FAILED})


# ── Gateways ─────────────────────────────────────────────────────

class RedisPaymentQueue(BasePaymentGateway):
    """Pushes payment requests onto a Redis list consumed by the payment service."""

    def __init__(self, queue_key: str = PAYMENT_REQUEST_QUEUE_KEY) -> None:
        self._queue_key = queue_key
        self._redis: aioredis.Redis | None = None

    async def connect(self) -> None:
        """Initialize the Redis connection."""
        if self._redis is None:
            settings = get_settings()
            self._redis = aioredis.from_url(
                settings.redis_url.get_secret_value(),
                decode_responses=True,
            )
            log.info("redis_connected", queue=self._queue_key)

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            log.info("redis_closed")

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    async def submit(self, request: PaymentRequest) -> None:
        r = await self._get_redis()
        payload = json.dumps(request.to_dict())
        try:
            await r.lpush(self._queue_key, payload)
        except aioredis.RedisError as exc:
            msg = f"could not enqueue payment request for invoice {request.invoice_id}"
            raise PaymentDispatchError(msg, context={"invoice_id": request.invoice_id}) from exc
        log.debug("payment_request_enqueued", queue=self._queue_key, invoice_id=request.invoice_id)


class InMemoryPaymentGateway(BasePaymentGateway):
    """Collects submitted requests; used in tests and dry runs."""

    def __init__(self) -> None:
        self.requests: list[PaymentRequest] = []

    async def submit(self, request: PaymentRequest) -> None:
        self.requests.append(request)


# ── Dispatcher ───────────────────────────────────────────────────

class PaymentRequestDispatcher:
    """Moves finalized invoices to ``payment_requested`` and applies callbacks."""

    def __init__(self, gateway: BasePaymentGateway, invoices: BaseInvoiceStore) -> None:
        self._gateway = gateway
        self._invoices = invoices

    async def dispatch(self, invoice: TenantInvoice) -> TenantInvoice:
        """Emit a charge request for a finalized invoice.

        The request id is the invoice id, so a repeated submission after a
        crash is deduplicated by the collaborator.
        """
        current = await self._get(invoice.invoice_id)
        if current.status == InvoiceStatus.DRAFT:
            msg = f"invoice {current.invoice_id} must be finalized before requesting payment"
            raise InvalidInvoiceTransition(
                msg, context={"invoice_id": current.invoice_id, "status": current.status.value}
            )
        if current.status != InvoiceStatus.FINALIZED:
            return current

        request = PaymentRequest(
            request_id=current.invoice_id,
            invoice_id=current.invoice_id,
            tenant_id=current.tenant_id,
            amount=current.total_amount,
            currency=current.currency,
            period_start=current.period_start,
            period_end=current.period_end,
        )
        await self._gateway.submit(request)

        try:
            updated = await self._invoices.transition(
                current.invoice_id,
                InvoiceStatus.FINALIZED,
                InvoiceStatus.PAYMENT_REQUESTED,
                at=datetime.now(timezone.utc),
            )
        except ConcurrentInvoiceConflict:
            log.info("payment_request_conflict", invoice_id=current.invoice_id)
            return await self._get(current.invoice_id)

        log.info(
            "payment_requested",
            tenant_id=updated.tenant_id,
            invoice_id=updated.invoice_id,
            amount=str(updated.total_amount),
            currency=updated.currency,
        )
        return updated

    async def apply_status_callback(
        self,
        invoice_id: str,
        status: InvoiceStatus,
        reference: str | None = None,
    ) -> TenantInvoice:
        """Record the collaborator's terminal verdict for an invoice."""
        if status not in _CALLBACK_STATUSES:
            msg = f"payment callback may only report paid or failed, got {status.value}"
            raise InvalidInvoiceTransition(msg, context={"invoice_id": invoice_id})

        current = await self._get(invoice_id)
        if current.status == status:
            return current
        if current.status != InvoiceStatus.PAYMENT_REQUESTED:
            msg = f"invoice {invoice_id} is {current.status.value}; cannot become {status.value}"
            raise InvalidInvoiceTransition(
                msg,
                context={"invoice_id": invoice_id, "status": current.status.value},
            )

        try:
            updated = await self._invoices.transition(
                invoice_id,
                InvoiceStatus.PAYMENT_REQUESTED,
                status,
                at=datetime.now(timezone.utc),
                payment_reference=reference,
            )
        except ConcurrentInvoiceConflict as exc:
            latest = await self._get(invoice_id)
            if latest.status == status:
                return latest
            msg = f"invoice {invoice_id} changed to {latest.status.value} concurrently"
            raise InvalidInvoiceTransition(msg, context={"invoice_id": invoice_id}) from exc

        log.info(
            "payment_status_recorded",
            tenant_id=updated.tenant_id,
            invoice_id=invoice_id,
            status=status.value,
            reference=reference,
        )
        return updated

    async def _get(self, invoice_id: str) -> TenantInvoice:
        invoice = await self._invoices.get(invoice_id)
        if invoice is None:
            msg = f"invoice {invoice_id} not found"
            raise InvoiceNotFound(msg, context={"invoice_id": invoice_id})
        return invoice
