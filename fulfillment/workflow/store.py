"""
Order Store

Durable order records on an AsyncSession. Every status or payment write is
a single conditional UPDATE that only matches while the row still holds the
value the caller read; a rowcount of zero means another writer got there
first. The store never decides whether a change is allowed, it only makes
sure the change lands on the state it was decided against.
"""

import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.models import (
    ActorRole,
    Order,
    OrderItem,
    OrderStatus,
    OrderTransition,
    PaymentStatus,
)

logger = logging.getLogger(__name__)

ORDER_NUMBER_ATTEMPTS = 5


def format_order_number(year: int, sequence: int) -> str:
    """ORD-<year>-<NNNN>, restarting every calendar year."""
    return f"ORD-{year}-{sequence:04d}"


class OrderStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    # =========================================================================
    # READS
    # =========================================================================

    async def get(self, order_id: str) -> Optional[Order]:
        """Load an order with its items, refreshing anything already cached."""
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def list(
        self,
        statuses: Optional[Iterable[OrderStatus]] = None,
        customer_email: Optional[str] = None,
        limit: int = 50,
    ) -> List[Order]:
        """Newest orders first."""
        stmt = select(Order).execution_options(populate_existing=True)
        if statuses is not None:
            stmt = stmt.where(Order.status.in_(list(statuses)))
        if customer_email:
            stmt = stmt.where(Order.customer_email == customer_email)
        stmt = stmt.order_by(Order.created_at.desc(), Order.order_number.desc()).limit(limit)

        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        stmt = select(Order).where(Order.payment_reference == payment_reference)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def history(self, order_id: str) -> List[OrderTransition]:
        """Audit rows for an order, oldest first."""
        stmt = (
            select(OrderTransition)
            .where(OrderTransition.order_id == order_id)
            .order_by(OrderTransition.occurred_at, OrderTransition.id)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # =========================================================================
    # WRITES
    # =========================================================================

    async def _next_order_number(self, year: int) -> str:
        prefix = f"ORD-{year}-"
        stmt = select(func.count()).select_from(Order).where(
            Order.order_number.like(f"{prefix}%")
        )
        count = (await self.session.execute(stmt)).scalar_one()
        return format_order_number(year, count + 1)

    async def create(
        self,
        build_order: Callable[[str], Order],
        year: int,
    ) -> Order:
        """
        Insert a new order under the next free order number for `year`.

        `build_order` receives the order number and returns a fresh, unsaved
        Order with its items. Two submissions racing for the same number hit
        the unique index; the loser rolls back and tries the next number.
        """
        for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
            order_number = await self._next_order_number(year)
            order = build_order(order_number)
            self.session.add(order)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                logger.warning(
                    f"Order number {order_number} taken, retrying "
                    f"(attempt {attempt}/{ORDER_NUMBER_ATTEMPTS})"
                )
                continue
            return await self.get(order.id)

        raise RuntimeError(
            f"Could not allocate an order number after {ORDER_NUMBER_ATTEMPTS} attempts"
        )

    async def apply_transition(
        self,
        order_id: str,
        read_status: OrderStatus,
        new_status: OrderStatus,
        stamp_field: str,
        stamped_at: datetime,
        actor_role: ActorRole,
        actor_id: Optional[str] = None,
        require_paid: bool = False,
    ) -> bool:
        """
        Move an order from `read_status` to `new_status` if nobody else has.

        The status change and its audit row commit together. Returns False,
        with nothing written, when the row no longer matches.
        """
        stamp_column = getattr(Order, stamp_field)
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.status == read_status)
            .where(stamp_column.is_(None))
        )
        if require_paid:
            stmt = stmt.where(Order.payment_status == PaymentStatus.PAID)
        stmt = stmt.values(
            {
                Order.status: new_status,
                stamp_column: stamped_at,
                Order.updated_at: stamped_at,
            }
        ).execution_options(synchronize_session=False)

        result = await self.session.execute(stmt)
        if result.rowcount != 1:
            await self.session.rollback()
            return False

        self.session.add(
            OrderTransition(
                order_id=order_id,
                from_status=read_status,
                to_status=new_status,
                actor_role=actor_role,
                actor_id=actor_id,
                occurred_at=stamped_at,
            )
        )
        await self.session.commit()
        return True

    async def mark_paid(
        self,
        order_id: str,
        payment_reference: str,
        payment_method: Optional[str],
        updated_at: datetime,
    ) -> bool:
        """
        Record a successful payment while the order is still unpaid.

        Never touches the workflow status. Returns False when the order was
        already marked paid by someone else. Raises IntegrityError when the
        reference is already recorded on another order.
        """
        stmt = (
            update(Order)
            .where(Order.id == order_id)
            .where(Order.payment_status == PaymentStatus.UNPAID)
            .values(
                {
                    Order.payment_status: PaymentStatus.PAID,
                    Order.payment_reference: payment_reference,
                    Order.payment_method: payment_method,
                    Order.updated_at: updated_at,
                }
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = await self.session.execute(stmt)
        except IntegrityError:
            # payment_reference is unique across orders
            await self.session.rollback()
            raise
        if result.rowcount != 1:
            await self.session.rollback()
            return False
        await self.session.commit()
        return True


def build_items(item_rows: Sequence[dict]) -> List[OrderItem]:
    return [
        OrderItem(position=position, **row)
        for position, row in enumerate(item_rows)
    ]
