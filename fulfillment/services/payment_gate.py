"""
Payment Gate

Ties payment confirmation to the order record. A payment counts only when
the processor itself reports the intent as succeeded and the intent was
issued for this order, for its total; the gate then flips
payment_status to paid with a conditional write and never touches the
workflow status. Front-of-house still confirms the order afterwards.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.config import Settings, get_settings
from fulfillment.errors import (
    Conflict,
    OrderNotFound,
    OrderValidationError,
    PaymentMismatch,
    PaymentNotSucceeded,
)
from fulfillment.models import Order, OrderStatus, PaymentStatus
from fulfillment.services.payment import PaymentGateway, PaymentIntentResult, PaymentRecord
from fulfillment.workflow.service import utcnow
from fulfillment.workflow.store import OrderStore

logger = logging.getLogger(__name__)

MINIMUM_CHARGE = Decimal("0.50")


class PaymentGate:
    def __init__(
        self,
        session: AsyncSession,
        gateway: PaymentGateway,
        store: Optional[OrderStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.gateway = gateway
        self.store = store or OrderStore(session)
        self.settings = settings or get_settings()

    async def _load(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    def _settled(self, order: Order, payment_reference: str) -> Optional[Order]:
        """
        Return the order when it is already paid with this reference.

        A different reference on a paid order is a conflict, never a
        second payment.
        """
        if order.payment_status != PaymentStatus.PAID:
            return None
        if order.payment_reference == payment_reference:
            return order
        logger.warning(
            f"Order {order.order_number}: already paid with "
            f"{order.payment_reference}, refusing {payment_reference}"
        )
        raise Conflict(
            f"Order {order.order_number} is already paid with a different payment",
            order_id=order.id,
        )

    def _check_binding(self, order: Order, record: PaymentRecord) -> None:
        """
        The processor record must be the intent issued for this order.

        It has to carry this order's id in its metadata and charge exactly
        the order total in the configured currency.
        """
        problem = None
        if str(record.metadata.get("order_id") or "") != order.id:
            problem = "was issued for a different order"
        elif record.amount is None or Decimal(record.amount) != Decimal(order.total):
            problem = f"charges {record.amount}, order total is {order.total}"
        elif (record.currency or "").lower() != self.settings.stripe_currency.lower():
            problem = f"is in {record.currency}, expected {self.settings.stripe_currency}"

        if problem is not None:
            logger.warning(f"Order {order.order_number}: payment {record.reference} {problem}")
            raise PaymentMismatch(
                f"Payment {record.reference} {problem}",
                payment_reference=record.reference,
                order_id=order.id,
            )

    async def confirm_payment(self, order_id: str, payment_reference: str) -> Order:
        """
        Mark an order paid once the processor reports the payment succeeded.

        Redelivered confirmations for the same reference return the order
        unchanged.

        Raises:
            OrderNotFound: no such order
            Conflict: the order is paid with a different reference
            PaymentReferenceUnknown: the processor never issued the reference
            PaymentProcessorUnavailable: the processor could not be reached
            PaymentNotSucceeded: the processor status is not succeeded
            PaymentMismatch: the payment belongs to another order, amount or
                currency
        """
        if not payment_reference:
            raise OrderValidationError("payment_reference is required", order_id=order_id)

        order = await self._load(order_id)
        settled = self._settled(order, payment_reference)
        if settled is not None:
            logger.info(f"Order {order.order_number}: payment {payment_reference} already recorded")
            return settled

        claimed = await self.store.find_by_payment_reference(payment_reference)
        if claimed is not None and claimed.id != order.id:
            logger.warning(
                f"Order {order.order_number}: payment {payment_reference} "
                f"already recorded on {claimed.order_number}"
            )
            raise PaymentMismatch(
                f"Payment {payment_reference} is already recorded on another order",
                payment_reference=payment_reference,
                order_id=order_id,
            )

        record = await self.gateway.retrieve_payment(payment_reference)
        if not record.succeeded:
            logger.info(
                f"Order {order.order_number}: payment {payment_reference} "
                f"not succeeded ({record.status})"
            )
            raise PaymentNotSucceeded(record.status, order_id=order_id)
        self._check_binding(order, record)

        try:
            written = await self.store.mark_paid(
                order_id=order_id,
                payment_reference=record.reference,
                payment_method=record.payment_method or "card",
                updated_at=utcnow(),
            )
        except IntegrityError:
            raise PaymentMismatch(
                f"Payment {record.reference} is already recorded on another order",
                payment_reference=record.reference,
                order_id=order_id,
            )
        order = await self._load(order_id)
        if not written:
            # Lost the race to another confirmation
            settled = self._settled(order, payment_reference)
            if settled is None:
                raise Conflict(
                    f"Order {order.order_number} changed while recording payment",
                    order_id=order_id,
                )
            return settled

        logger.info(
            f"Order {order.order_number}: payment confirmed "
            f"({record.reference}, {order.payment_method})"
        )
        return order

    async def create_payment_intent(self, order_id: str) -> PaymentIntentResult:
        """
        Ask the processor for an intent covering the order total.

        Only unpaid, uncancelled orders can be charged.
        """
        order = await self._load(order_id)
        if order.payment_status == PaymentStatus.PAID:
            raise Conflict(f"Order {order.order_number} is already paid", order_id=order_id)
        if order.status == OrderStatus.CANCELLED:
            raise OrderValidationError(
                f"Order {order.order_number} is cancelled", order_id=order_id
            )
        amount = Decimal(order.total)
        if amount < MINIMUM_CHARGE:
            raise OrderValidationError(
                f"Order total must be at least ${MINIMUM_CHARGE}", order_id=order_id
            )

        intent = await self.gateway.create_payment_intent(
            amount=amount,
            currency=self.settings.stripe_currency,
            metadata={
                "order_id": order.id,
                "order_number": order.order_number,
                "customer_email": order.customer_email,
            },
        )
        logger.info(
            f"Order {order.order_number}: payment intent {intent.reference} "
            f"created for ${amount}"
        )
        return intent
