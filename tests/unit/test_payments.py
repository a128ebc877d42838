"""Tests for payment request dispatch and collaborator status callbacks."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
import redis.asyncio as aioredis

from conftest import PERIOD_END, PERIOD_START, BillingHarness
from src.billing.payments import RedisPaymentQueue
from src.core.exceptions import InvalidInvoiceTransition, InvoiceNotFound, PaymentDispatchError
from src.core.types import InvoiceStatus, PaymentRequest, TenantInvoice


async def _finalized(h: BillingHarness) -> TenantInvoice:
    composer = h.services.composer
    return await composer.finalize(await composer.compose("acme", PERIOD_START, PERIOD_END))


async def _requested(h: BillingHarness) -> TenantInvoice:
    return await h.services.dispatcher.dispatch(await _finalized(h))


class TestDispatch:
    @pytest.mark.asyncio
    async def test_finalized_invoice_emits_request(self, harness: BillingHarness) -> None:
        invoice = await _finalized(harness)

        updated = await harness.services.dispatcher.dispatch(invoice)

        assert updated.status == InvoiceStatus.PAYMENT_REQUESTED
        assert len(harness.gateway.requests) == 1
        request = harness.gateway.requests[0]
        assert request.request_id == invoice.invoice_id
        assert request.amount == invoice.total_amount == Decimal("99.00")
        assert request.currency == "USD"

    @pytest.mark.asyncio
    async def test_draft_cannot_be_dispatched(self, harness: BillingHarness) -> None:
        draft = await harness.services.composer.compose("acme", PERIOD_START, PERIOD_END)
        with pytest.raises(InvalidInvoiceTransition):
            await harness.services.dispatcher.dispatch(draft)
        assert harness.gateway.requests == []

    @pytest.mark.asyncio
    async def test_repeat_dispatch_is_a_no_op(self, harness: BillingHarness) -> None:
        invoice = await _finalized(harness)
        dispatcher = harness.services.dispatcher

        await dispatcher.dispatch(invoice)
        again = await dispatcher.dispatch(invoice)

        assert again.status == InvoiceStatus.PAYMENT_REQUESTED
        assert len(harness.gateway.requests) == 1

    @pytest.mark.asyncio
    async def test_gateway_failure_leaves_invoice_finalized(self, harness: BillingHarness) -> None:
        invoice = await _finalized(harness)
        harness.gateway.submit = AsyncMock(  # type: ignore[method-assign]
            side_effect=PaymentDispatchError("queue down")
        )

        with pytest.raises(PaymentDispatchError):
            await harness.services.dispatcher.dispatch(invoice)

        stored = await harness.services.composer.get_invoice(invoice.invoice_id)
        assert stored.status == InvoiceStatus.FINALIZED


class TestStatusCallback:
    @pytest.mark.asyncio
    async def test_paid(self, harness: BillingHarness) -> None:
        invoice = await _requested(harness)

        paid = await harness.services.dispatcher.apply_status_callback(
            invoice.invoice_id, InvoiceStatus.PAID, "ch_123"
        )

        assert paid.status == InvoiceStatus.PAID
        assert paid.payment_reference == "ch_123"

    @pytest.mark.asyncio
    async def test_failed(self, harness: BillingHarness) -> None:
        invoice = await _requested(harness)
        failed = await harness.services.dispatcher.apply_status_callback(
            invoice.invoice_id, InvoiceStatus.FAILED
        )
        assert failed.status == InvoiceStatus.FAILED
        assert failed.status.is_terminal

    @pytest.mark.asyncio
    async def test_repeated_callback_is_idempotent(self, harness: BillingHarness) -> None:
        invoice = await _requested(harness)
        dispatcher = harness.services.dispatcher

        await dispatcher.apply_status_callback(invoice.invoice_id, InvoiceStatus.PAID, "ch_1")
        again = await dispatcher.apply_status_callback(invoice.invoice_id, InvoiceStatus.PAID, "ch_1")

        assert again.status == InvoiceStatus.PAID

    @pytest.mark.asyncio
    async def test_paid_cannot_become_failed(self, harness: BillingHarness) -> None:
        invoice = await _requested(harness)
        dispatcher = harness.services.dispatcher
        await dispatcher.apply_status_callback(invoice.invoice_id, InvoiceStatus.PAID)

        with pytest.raises(InvalidInvoiceTransition):
            await dispatcher.apply_status_callback(invoice.invoice_id, InvoiceStatus.FAILED)

    @pytest.mark.asyncio
    async def test_callback_before_request_rejected(self, harness: BillingHarness) -> None:
        invoice = await _finalized(harness)
        with pytest.raises(InvalidInvoiceTransition):
            await harness.services.dispatcher.apply_status_callback(
                invoice.invoice_id, InvoiceStatus.PAID
            )

    @pytest.mark.asyncio
    async def test_non_terminal_status_rejected(self, harness: BillingHarness) -> None:
        invoice = await _requested(harness)
        with pytest.raises(InvalidInvoiceTransition):
            await harness.services.dispatcher.apply_status_callback(
                invoice.invoice_id, InvoiceStatus.FINALIZED
            )

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, harness: BillingHarness) -> None:
        with pytest.raises(InvoiceNotFound):
            await harness.services.dispatcher.apply_status_callback("missing", InvoiceStatus.PAID)


class TestRedisPaymentQueue:
    def _request(self) -> PaymentRequest:
        return PaymentRequest(
            request_id="inv-1",
            invoice_id="inv-1",
            tenant_id="acme",
            amount=Decimal("107.40"),
            currency="USD",
            period_start=PERIOD_START,
            period_end=PERIOD_END,
        )

    @pytest.mark.asyncio
    async def test_submit_pushes_json(self) -> None:
        queue = RedisPaymentQueue(queue_key="test:payments")
        fake = AsyncMock()
        queue._redis = fake

        await queue.submit(self._request())

        key, payload = fake.lpush.await_args.args
        assert key == "test:payments"
        body = json.loads(payload)
        assert body["invoice_id"] == "inv-1"
        assert body["amount"] == "107.40"

    @pytest.mark.asyncio
    async def test_redis_error_wrapped(self) -> None:
        queue = RedisPaymentQueue()
        fake = AsyncMock()
        fake.lpush.side_effect = aioredis.ConnectionError("refused")
        queue._redis = fake

        with pytest.raises(PaymentDispatchError):
            await queue.submit(self._request())

    @pytest.mark.asyncio
    async def test_close_releases_connection(self) -> None:
        queue = RedisPaymentQueue()
        fake = AsyncMock()
        queue._redis = fake

        await queue.close()

        fake.aclose.assert_awaited_once()
        assert queue._redis is None
