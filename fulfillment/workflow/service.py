"""
Workflow Service

The single entry point for creating orders and moving them through the
fulfillment workflow. Both station surfaces and the customer flow go
through here, so the transition table, the station channel check and the
conditional write are applied the same way for everyone.

Usage:
    service = WorkflowService(session)
    order = await service.request_transition(order_id, "acknowledged", ActorRole.BOH)
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.config import OrderManagementMode, Settings, get_settings
from fulfillment.errors import Conflict, OrderNotFound, OrderValidationError
from fulfillment.models import ActorRole, Order, OrderStatus, PaymentStatus
from fulfillment.workflow.stations import channel_for
from fulfillment.workflow.store import OrderStore, build_items
from fulfillment.workflow.transitions import STAMP_FIELDS, STAGES, evaluate_transition

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
BOH_TIP_SHARE = Decimal("0.70")
ONE_MICROSECOND = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def to_money(value: Any, field: str) -> Decimal:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise OrderValidationError(f"{field} must be a number")
    if not amount.is_finite():
        raise OrderValidationError(f"{field} must be a number")
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def split_tip(tip: Decimal, mode: OrderManagementMode) -> tuple:
    """
    Split a tip between kitchen and front-of-house.

    Returns (boh_tip, foh_tip). In kitchen-managed mode the kitchen keeps
    70%; the front-of-house share is the remainder so the parts always add
    up to the tip.
    """
    if mode == OrderManagementMode.BOH:
        boh_tip = (tip * BOH_TIP_SHARE).quantize(CENT, rounding=ROUND_HALF_UP)
        return boh_tip, tip - boh_tip
    return Decimal("0.00"), tip


def latest_stamp(order: Order) -> datetime:
    """The most recent workflow timestamp on an order."""
    stamps = [as_utc(order.created_at)]
    for status in STAGES[1:] + (OrderStatus.CANCELLED,):
        value = as_utc(getattr(order, STAMP_FIELDS[status]))
        if value is not None:
            stamps.append(value)
    return max(stamps)


class WorkflowService:
    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
        store: Optional[OrderStore] = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.clock = clock
        self.store = store or OrderStore(session)

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_order(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    async def list_orders(
        self,
        status_filter: Optional[Union[OrderStatus, Iterable[OrderStatus]]] = None,
        customer_email: Optional[str] = None,
        limit: int = 50,
    ) -> List[Order]:
        if isinstance(status_filter, (OrderStatus, str)):
            status_filter = [status_filter]
        if status_filter is not None:
            try:
                status_filter = [OrderStatus(status) for status in status_filter]
            except ValueError:
                raise OrderValidationError(
                    f"Invalid status. Options: {[s.value for s in OrderStatus]}"
                )
        if limit < 1:
            raise OrderValidationError("limit must be at least 1")
        return await self.store.list(
            statuses=status_filter,
            customer_email=customer_email,
            limit=limit,
        )

    # =========================================================================
    # ORDER INTAKE
    # =========================================================================

    async def create_order(
        self,
        items: Sequence[Mapping[str, Any]],
        customer: Mapping[str, Any],
        pickup_time: Optional[datetime] = None,
        tip: Any = 0,
        special_instructions: Optional[str] = None,
    ) -> Order:
        """
        Create a pending, unpaid order from the customer's cart.

        Names and prices are snapshotted onto the line items. Totals are
        computed here and never accepted from the client.
        """
        if not items:
            raise OrderValidationError("order must contain at least one item")

        for field in ("name", "email", "phone"):
            if not str(customer.get(field) or "").strip():
                raise OrderValidationError(f"customer {field} is required")

        item_rows = []
        subtotal = Decimal("0.00")
        for index, item in enumerate(items):
            name = str(item.get("name") or "").strip()
            if not name:
                raise OrderValidationError(f"item {index + 1} has no name")
            unit_price = to_money(item.get("unit_price"), "unit_price")
            if unit_price < 0:
                raise OrderValidationError(f"item {index + 1} has a negative price")
            quantity = item.get("quantity", 1)
            if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity < 1:
                raise OrderValidationError(f"item {index + 1} quantity must be at least 1")

            subtotal += unit_price * quantity
            item_rows.append({
                "menu_item_id": item.get("menu_item_id"),
                "name": name,
                "unit_price": unit_price,
                "quantity": quantity,
                "modifiers": list(item.get("modifiers") or []),
                "special_instructions": item.get("special_instructions"),
            })

        tip_amount = to_money(tip or 0, "tip")
        if tip_amount < 0:
            raise OrderValidationError("tip cannot be negative")

        tax = (subtotal * self.settings.tax_rate).quantize(CENT, rounding=ROUND_HALF_UP)
        total = subtotal + tax + tip_amount
        boh_tip, foh_tip = split_tip(tip_amount, self.settings.order_management_mode)
        now = self.clock()

        def build_order(order_number: str) -> Order:
            return Order(
                order_number=order_number,
                status=OrderStatus.PENDING,
                payment_status=PaymentStatus.UNPAID,
                customer_name=str(customer["name"]).strip(),
                customer_email=str(customer["email"]).strip(),
                customer_phone=str(customer["phone"]).strip(),
                pickup_time=pickup_time,
                special_instructions=special_instructions,
                subtotal=subtotal,
                tax=tax,
                tip=tip_amount,
                total=total,
                boh_tip=boh_tip,
                foh_tip=foh_tip,
                created_at=now,
                updated_at=now,
                items=build_items(item_rows),
            )

        order = await self.store.create(build_order, year=now.year)
        logger.info(
            f"Order {order.order_number} created - {len(item_rows)} items, "
            f"total ${order.total}"
        )
        return order

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    def _next_stamp(self, order: Order) -> datetime:
        """Wall clock, nudged forward so stamps never tie or go backward."""
        now = as_utc(self.clock())
        floor = latest_stamp(order) + ONE_MICROSECOND
        return max(now, floor)

    async def request_transition(
        self,
        order_id: str,
        requested_status: Union[OrderStatus, str],
        actor_role: ActorRole,
        actor_id: Optional[str] = None,
    ) -> Order:
        """
        Move an order to `requested_status` on behalf of a station.

        Raises:
            RoleForbidden: the station does not own that target status
            OrderNotFound: no such order
            InvalidTransition / OutOfWorkflow / PaymentRequired: refused
            Conflict: another station changed the order first
        """
        actor_role = ActorRole(actor_role)
        channel_for(actor_role).authorize(requested_status)

        order = await self.get_order(order_id)
        read_status = order.status
        order_number = order.order_number

        decision = evaluate_transition(
            read_status, requested_status, actor_role, order.payment_status
        )
        if not decision.allowed:
            logger.info(
                f"Order {order_number}: {actor_role.value} "
                f"{read_status.value} -> {getattr(requested_status, 'value', requested_status)} rejected "
                f"({decision.rejection.value}: {decision.reason})"
            )
            decision.raise_if_rejected(order_id)

        new_status = OrderStatus(requested_status)
        stamped_at = self._next_stamp(order)
        applied = await self.store.apply_transition(
            order_id=order_id,
            read_status=read_status,
            new_status=new_status,
            stamp_field=decision.stamp_field,
            stamped_at=stamped_at,
            actor_role=actor_role,
            actor_id=actor_id,
            require_paid=new_status == OrderStatus.CONFIRMED,
        )
        if not applied:
            logger.warning(
                f"Order {order_number}: {actor_role.value} "
                f"{read_status.value} -> {new_status.value} lost a concurrent update"
            )
            raise Conflict(
                f"Order {order_number} changed while it was being updated; "
                f"re-read it and try again",
                order_id=order_id,
            )

        logger.info(
            f"Order {order_number}: {read_status.value} -> {new_status.value} "
            f"by {actor_role.value}" + (f" ({actor_id})" if actor_id else "")
        )
        return await self.get_order(order_id)
