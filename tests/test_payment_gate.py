from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from fulfillment.core.config import Settings
from fulfillment.errors import (
    Conflict,
    OrderNotFound,
    OrderValidationError,
    PaymentMismatch,
    PaymentNotSucceeded,
    PaymentProcessorUnavailable,
    PaymentReferenceUnknown,
)
from fulfillment.models import ActorRole, OrderStatus, PaymentStatus
from fulfillment.services.payment.base import PaymentRecord
from fulfillment.services.payment_gate import PaymentGate
from fulfillment.workflow.store import OrderStore
from tests.fixtures_data import create_order, intent_for


@pytest.fixture
def gate(session, gateway):
    return PaymentGate(session, gateway)


async def test_confirm_payment_marks_order_paid(service, gate, gateway):
    order = await create_order(service)
    intent = await gateway.create_payment_intent(Decimal(order.total), metadata={"order_id": order.id})
    gateway.mark_succeeded(intent.reference, payment_method="link")

    paid = await gate.confirm_payment(order.id, intent.reference)

    assert paid.payment_status == PaymentStatus.PAID
    assert paid.payment_reference == intent.reference
    assert paid.payment_method == "link"
    assert paid.status == OrderStatus.PENDING


async def test_redelivered_confirmation_returns_order_unchanged(service, gate, gateway):
    order = await create_order(service)
    record = intent_for(gateway, order, payment_method="card")
    first = await gate.confirm_payment(order.id, record.reference)

    gateway.unavailable = True  # a redelivery must not need the processor
    second = await gate.confirm_payment(order.id, record.reference)

    assert second.payment_reference == first.payment_reference
    assert second.updated_at == first.updated_at


async def test_paid_order_refuses_a_different_reference(service, gate, gateway):
    order = await create_order(service)
    first = intent_for(gateway, order)
    other = intent_for(gateway, order)
    await gate.confirm_payment(order.id, first.reference)

    with pytest.raises(Conflict):
        await gate.confirm_payment(order.id, other.reference)


@pytest.mark.parametrize("processor_status", ["requires_payment_method", "processing", "canceled"])
async def test_unsucceeded_payment_reports_processor_status(service, gate, gateway, processor_status):
    order = await create_order(service)
    record = intent_for(gateway, order, status=processor_status)

    with pytest.raises(PaymentNotSucceeded) as excinfo:
        await gate.confirm_payment(order.id, record.reference)

    assert excinfo.value.processor_status == processor_status
    assert excinfo.value.message == f"Payment not succeeded. Status: {processor_status}"
    assert (await service.get_order(order.id)).payment_status == PaymentStatus.UNPAID


async def test_unknown_reference(service, gate):
    order = await create_order(service)

    with pytest.raises(PaymentReferenceUnknown):
        await gate.confirm_payment(order.id, "pi_never_issued")


async def test_processor_outage_is_retryable(service, gate, gateway):
    order = await create_order(service)
    record = intent_for(gateway, order)
    gateway.unavailable = True

    with pytest.raises(PaymentProcessorUnavailable) as excinfo:
        await gate.confirm_payment(order.id, record.reference)

    assert excinfo.value.retryable is True
    assert excinfo.value.http_status == 503


async def test_missing_order(gate):
    with pytest.raises(OrderNotFound):
        await gate.confirm_payment("does-not-exist", "pi_123")


async def test_confirmation_that_loses_the_race(session, service, gateway):
    order = await create_order(service)
    record = intent_for(gateway, order)
    store = OrderStore(session)
    store.mark_paid = AsyncMock(return_value=False)

    with pytest.raises(Conflict):
        await PaymentGate(session, gateway, store=store).confirm_payment(order.id, record.reference)


async def test_payment_never_moves_the_workflow(service, gate, gateway):
    order = await create_order(service)
    await service.request_transition(order.id, "cancelled", ActorRole.FOH)
    record = intent_for(gateway, order)

    paid = await gate.confirm_payment(order.id, record.reference)

    assert paid.status == OrderStatus.CANCELLED
    assert paid.payment_status == PaymentStatus.PAID


# =============================================================================
# PAYMENT MUST BELONG TO THE ORDER
# =============================================================================

async def test_intent_issued_for_another_order_is_refused(service, gate, gateway):
    order = await create_order(service)
    other = await create_order(service)
    record = intent_for(gateway, order, order_id=other.id)

    with pytest.raises(PaymentMismatch) as excinfo:
        await gate.confirm_payment(order.id, record.reference)

    assert excinfo.value.retryable is False
    assert excinfo.value.payment_reference == record.reference
    assert (await service.get_order(order.id)).payment_status == PaymentStatus.UNPAID


async def test_short_payment_is_refused(service, gate, gateway):
    order = await create_order(service)
    record = intent_for(gateway, order, amount="1.09")

    with pytest.raises(PaymentMismatch):
        await gate.confirm_payment(order.id, record.reference)

    assert (await service.get_order(order.id)).payment_status == PaymentStatus.UNPAID


async def test_payment_in_another_currency_is_refused(session, service, gateway):
    order = await create_order(service)
    record = intent_for(gateway, order)
    gate = PaymentGate(session, gateway, settings=Settings(stripe_currency="eur"))

    with pytest.raises(PaymentMismatch):
        await gate.confirm_payment(order.id, record.reference)


async def test_one_payment_cannot_settle_two_orders(service, gate, gateway):
    cheap = await create_order(service, items=[{"name": "Espresso", "unit_price": "1.00"}], tip="0")
    big = await create_order(service)
    record = intent_for(gateway, cheap)
    await gate.confirm_payment(cheap.id, record.reference)

    with pytest.raises(PaymentMismatch):
        await gate.confirm_payment(big.id, record.reference)

    assert (await service.get_order(big.id)).payment_status == PaymentStatus.UNPAID
    assert (await service.get_order(cheap.id)).payment_reference == record.reference


async def test_reference_recorded_concurrently_on_another_order(session, service, gateway):
    first = await create_order(service)
    second = await create_order(service)
    shared = PaymentRecord(
        reference="pi_shared",
        status="succeeded",
        amount=Decimal(second.total),
        currency="usd",
        metadata={"order_id": second.id},
    )
    first_store = OrderStore(session)
    await first_store.mark_paid(first.id, "pi_shared", "card", first.updated_at)

    store = OrderStore(session)
    store.find_by_payment_reference = AsyncMock(return_value=None)
    processor = AsyncMock()
    processor.retrieve_payment.return_value = shared

    with pytest.raises(PaymentMismatch):
        await PaymentGate(session, processor, store=store).confirm_payment(second.id, "pi_shared")

    assert (await service.get_order(second.id)).payment_status == PaymentStatus.UNPAID


# =============================================================================
# PAYMENT INTENTS
# =============================================================================

async def test_create_payment_intent_for_order_total(service, gate, gateway):
    order = await create_order(service)

    intent = await gate.create_payment_intent(order.id)

    assert intent.amount == order.total
    assert intent.currency == "usd"
    assert intent.client_secret.startswith(intent.reference)
    record = await gateway.retrieve_payment(intent.reference)
    assert record.metadata["order_id"] == order.id
    assert record.metadata["order_number"] == order.order_number


async def test_intent_from_create_intent_confirms_its_order(service, gate, gateway):
    order = await create_order(service)
    intent = await gate.create_payment_intent(order.id)
    gateway.mark_succeeded(intent.reference)

    paid = await gate.confirm_payment(order.id, intent.reference)

    assert paid.payment_status == PaymentStatus.PAID


async def test_create_payment_intent_enforces_minimum_charge(service, gate):
    order = await create_order(service, items=[{"name": "Mint", "unit_price": "0.10"}], tip="0")

    with pytest.raises(OrderValidationError):
        await gate.create_payment_intent(order.id)


async def test_create_payment_intent_refuses_paid_and_cancelled_orders(service, gate, gateway):
    paid_order = await create_order(service)
    record = intent_for(gateway, paid_order)
    await gate.confirm_payment(paid_order.id, record.reference)
    with pytest.raises(Conflict):
        await gate.create_payment_intent(paid_order.id)

    cancelled = await create_order(service)
    await service.request_transition(cancelled.id, "cancelled", ActorRole.FOH)
    with pytest.raises(OrderValidationError):
        await gate.create_payment_intent(cancelled.id)


async def test_gate_trusts_only_the_processor_record(service, session):
    order = await create_order(service)
    gateway = AsyncMock()
    gateway.retrieve_payment.return_value = PaymentRecord(
        reference="pi_abc",
        status="succeeded",
        payment_method=None,
        amount=Decimal(order.total),
        currency="usd",
        metadata={"order_id": order.id},
    )

    paid = await PaymentGate(session, gateway).confirm_payment(order.id, "pi_abc")

    gateway.retrieve_payment.assert_awaited_once_with("pi_abc")
    assert paid.payment_method == "card"
