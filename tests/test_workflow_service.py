import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fulfillment.core.config import Settings
from fulfillment.errors import (
    Conflict,
    InvalidTransition,
    OrderNotFound,
    OrderValidationError,
    OutOfWorkflow,
    PaymentRequired,
    RoleForbidden,
)
from fulfillment.models import ActorRole, OrderStatus, PaymentStatus
from fulfillment.workflow.service import WorkflowService, as_utc, split_tip
from fulfillment.workflow.store import OrderStore
from tests.fixtures_data import create_order, pay

FOH = ActorRole.FOH
BOH = ActorRole.BOH

STAGE_FIELDS = ["created_at", "confirmed_at", "acknowledged_at", "preparing_at", "ready_at", "completed_at"]


class FrozenClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


class BarrierStore(OrderStore):
    """Holds the first read until every racer has read too."""

    def __init__(self, session, barrier):
        super().__init__(session)
        self.barrier = barrier
        self.waited = False

    async def get(self, order_id):
        order = await super().get(order_id)
        if not self.waited:
            self.waited = True
            await self.barrier.wait()
        return order


async def confirmed_order(session, service, gateway):
    order = await create_order(service)
    await pay(session, gateway, order)
    return await service.request_transition(order.id, "confirmed", FOH, actor_id="alice")


# =============================================================================
# ORDER INTAKE
# =============================================================================

async def test_create_order_computes_totals(service):
    order = await create_order(service, tip="5.00")

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.UNPAID
    assert order.subtotal == Decimal("38.97")
    assert order.tax == Decimal("3.46")
    assert order.total == Decimal("47.43")
    assert order.foh_tip == Decimal("5.00")
    assert order.boh_tip == Decimal("0.00")
    assert [item.name for item in order.items] == ["Pizza Margherita", "Caesar Salad"]
    assert order.items[0].modifiers == ["extra basil"]
    assert order.created_at is not None
    assert order.confirmed_at is None


async def test_order_numbers_are_sequential_per_year(session, settings):
    service = WorkflowService(
        session,
        settings=settings,
        clock=FrozenClock(datetime(2025, 3, 1, 12, tzinfo=timezone.utc)),
    )

    first = await create_order(service)
    second = await create_order(service)

    assert first.order_number == "ORD-2025-0001"
    assert second.order_number == "ORD-2025-0002"

    service.clock = FrozenClock(datetime(2026, 1, 1, 0, 5, tzinfo=timezone.utc))
    new_year = await create_order(service)
    assert new_year.order_number == "ORD-2026-0001"


async def test_kitchen_managed_mode_splits_tips(session):
    settings = Settings(order_management_mode="boh")
    service = WorkflowService(session, settings=settings)

    order = await create_order(service, tip="10.00")

    assert order.boh_tip == Decimal("7.00")
    assert order.foh_tip == Decimal("3.00")


def test_tip_split_always_adds_up():
    boh, foh = split_tip(Decimal("0.05"), Settings(order_management_mode="boh").order_management_mode)

    assert boh == Decimal("0.04")
    assert boh + foh == Decimal("0.05")


@pytest.mark.parametrize(
    "items, customer, tip",
    [
        ([], {}, "0"),
        ([{"name": "Soup", "unit_price": "4.00", "quantity": 0}], {}, "0"),
        ([{"name": "", "unit_price": "4.00"}], {}, "0"),
        ([{"name": "Soup", "unit_price": "abc"}], {}, "0"),
        ([{"name": "Soup", "unit_price": "4.00"}], {"email": ""}, "0"),
        ([{"name": "Soup", "unit_price": "4.00"}], {}, "-1"),
    ],
)
async def test_create_order_rejects_bad_input(service, items, customer, tip):
    base = {"name": "Sam", "email": "sam@example.com", "phone": "555-000-1111"}

    with pytest.raises(OrderValidationError):
        await service.create_order(items=items, customer={**base, **customer}, tip=tip)


async def test_list_orders_filters_and_orders_newest_first(session, settings):
    clock = FrozenClock(datetime(2025, 5, 1, 18, tzinfo=timezone.utc))
    service = WorkflowService(session, settings=settings, clock=clock)
    older = await create_order(service, email="first@example.com")
    clock.now += timedelta(minutes=1)
    newer = await create_order(service, email="second@example.com")

    everything = await service.list_orders()
    assert [o.id for o in everything] == [newer.id, older.id]

    by_email = await service.list_orders(customer_email="first@example.com")
    assert [o.id for o in by_email] == [older.id]

    assert await service.list_orders(status_filter=OrderStatus.CONFIRMED) == []
    assert len(await service.list_orders(limit=1)) == 1


async def test_list_orders_accepts_status_strings_and_rejects_unknown_ones(service):
    order = await create_order(service)

    assert [o.id for o in await service.list_orders(status_filter="pending")] == [order.id]
    assert [o.id for o in await service.list_orders(status_filter=["pending", "confirmed"])] == [order.id]
    with pytest.raises(OrderValidationError):
        await service.list_orders(status_filter="delivered")
    with pytest.raises(OrderValidationError):
        await service.list_orders(status_filter=["pending", "bogus"])


async def test_get_missing_order(service):
    with pytest.raises(OrderNotFound):
        await service.get_order("does-not-exist")


# =============================================================================
# TRANSITIONS
# =============================================================================

async def test_happy_path_with_kitchen_skip_rejected(session, service, gateway):
    order = await create_order(service)

    with pytest.raises(PaymentRequired):
        await service.request_transition(order.id, "confirmed", FOH)

    await pay(session, gateway, order)
    order = await service.request_transition(order.id, "confirmed", FOH, actor_id="alice")
    assert order.status == OrderStatus.CONFIRMED

    with pytest.raises(InvalidTransition) as excinfo:
        await service.request_transition(order.id, "preparing", BOH)
    assert "acknowledged" in excinfo.value.message

    for status in ("acknowledged", "preparing", "ready"):
        order = await service.request_transition(order.id, status, BOH, actor_id="kds-1")
        assert order.status == OrderStatus(status)

    with pytest.raises(RoleForbidden):
        await service.request_transition(order.id, "completed", BOH)

    order = await service.request_transition(order.id, "completed", FOH)
    assert order.status == OrderStatus.COMPLETED

    history = await service.store.history(order.id)
    assert [(h.from_status.value, h.to_status.value, h.actor_role.value) for h in history] == [
        ("pending", "confirmed", "foh"),
        ("confirmed", "acknowledged", "boh"),
        ("acknowledged", "preparing", "boh"),
        ("preparing", "ready", "boh"),
        ("ready", "completed", "foh"),
    ]
    assert history[0].actor_id == "alice"
    assert as_utc(history[-1].occurred_at) == as_utc(order.completed_at)


async def test_same_transition_twice_is_rejected(session, service, gateway):
    order = await confirmed_order(session, service, gateway)

    first = await service.request_transition(order.id, "acknowledged", BOH)
    acknowledged_at = first.acknowledged_at

    with pytest.raises(InvalidTransition):
        await service.request_transition(order.id, "acknowledged", BOH)

    again = await service.get_order(order.id)
    assert again.acknowledged_at == acknowledged_at


async def test_stamps_strictly_increase_even_with_a_stuck_clock(session, settings, gateway):
    clock = FrozenClock(datetime(2025, 6, 1, 12, tzinfo=timezone.utc))
    service = WorkflowService(session, settings=settings, clock=clock)
    order = await create_order(service)
    await pay(session, gateway, order)

    order = await service.request_transition(order.id, "confirmed", FOH)
    for status in ("acknowledged", "preparing", "ready"):
        order = await service.request_transition(order.id, status, BOH)
    order = await service.request_transition(order.id, "completed", FOH)

    stamps = [as_utc(getattr(order, field)) for field in STAGE_FIELDS]
    assert all(stamp is not None for stamp in stamps)
    assert all(earlier < later for earlier, later in zip(stamps, stamps[1:]))
    assert order.cancelled_at is None


async def test_stamps_follow_the_wall_clock_when_it_moves(session, settings, gateway):
    clock = FrozenClock(datetime(2025, 6, 1, 12, tzinfo=timezone.utc))
    service = WorkflowService(session, settings=settings, clock=clock)
    order = await create_order(service)
    await pay(session, gateway, order)

    clock.now += timedelta(minutes=3)
    order = await service.request_transition(order.id, "confirmed", FOH)

    assert as_utc(order.confirmed_at) == clock.now


async def test_concurrent_kitchen_acknowledge_has_one_winner(session, session_factory, settings, gateway):
    order = await confirmed_order(session, WorkflowService(session, settings=settings), gateway)
    barrier = asyncio.Barrier(2)

    async def acknowledge(station_id):
        async with session_factory() as own_session:
            service = WorkflowService(
                own_session,
                settings=settings,
                store=BarrierStore(own_session, barrier),
            )
            return await service.request_transition(order.id, "acknowledged", BOH, actor_id=station_id)

    results = await asyncio.gather(
        acknowledge("kds-1"), acknowledge("kds-2"), return_exceptions=True
    )

    successes = [r for r in results if not isinstance(r, Exception)]
    conflicts = [r for r in results if isinstance(r, Conflict)]
    assert len(successes) == 1
    assert len(conflicts) == 1
    assert conflicts[0].retryable is True

    async with session_factory() as check:
        store = OrderStore(check)
        final = await store.get(order.id)
        history = await store.history(order.id)
    assert final.status == OrderStatus.ACKNOWLEDGED
    assert final.acknowledged_at is not None
    acknowledgements = [h for h in history if h.to_status == OrderStatus.ACKNOWLEDGED]
    assert len(acknowledgements) == 1
    assert acknowledgements[0].actor_id in {"kds-1", "kds-2"}


async def test_kitchen_cannot_touch_unconfirmed_orders(service):
    order = await create_order(service)

    with pytest.raises(OutOfWorkflow):
        await service.request_transition(order.id, "acknowledged", BOH)


async def test_kitchen_role_check_runs_before_lookup(service):
    with pytest.raises(RoleForbidden):
        await service.request_transition("does-not-exist", "completed", BOH)


async def test_transition_on_missing_order(service):
    with pytest.raises(OrderNotFound):
        await service.request_transition("does-not-exist", "confirmed", FOH)


@pytest.mark.parametrize("steps", [[], ["acknowledged"]])
async def test_cancel_before_preparation(session, service, gateway, steps):
    order = await confirmed_order(session, service, gateway)
    for status in steps:
        await service.request_transition(order.id, status, BOH)

    cancelled = await service.request_transition(order.id, "cancelled", FOH)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert cancelled.payment_status == PaymentStatus.PAID


async def test_cancel_pending_order(service):
    order = await create_order(service)

    cancelled = await service.request_transition(order.id, "cancelled", FOH)

    assert cancelled.status == OrderStatus.CANCELLED


@pytest.mark.parametrize("steps", [["acknowledged", "preparing"], ["acknowledged", "preparing", "ready"]])
async def test_cancel_refused_once_preparing(session, service, gateway, steps):
    order = await confirmed_order(session, service, gateway)
    for status in steps:
        await service.request_transition(order.id, status, BOH)

    with pytest.raises(InvalidTransition):
        await service.request_transition(order.id, "cancelled", FOH)

    assert (await service.get_order(order.id)).status == OrderStatus(steps[-1])


async def test_cancelled_order_is_terminal(service):
    order = await create_order(service)
    await service.request_transition(order.id, "cancelled", FOH)

    with pytest.raises(InvalidTransition):
        await service.request_transition(order.id, "cancelled", FOH)
    with pytest.raises(InvalidTransition):
        await service.request_transition(order.id, "confirmed", FOH)
