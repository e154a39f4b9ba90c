"""
SQLAlchemy Database Models

The order store for the fulfillment workflow:
- Orders with their payment state and per-stage timestamps
- Line items snapshotted from the menu at submission time
- An append-only log of every status transition
"""

import enum
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from fulfillment.database import Base


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ACKNOWLEDGED = "acknowledged"
    PREPARING = "preparing"
    READY = "ready"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    """Whether the processor has reported a successful payment."""
    UNPAID = "unpaid"
    PAID = "paid"


class ActorRole(str, enum.Enum):
    """Station family allowed to move an order."""
    FOH = "foh"
    BOH = "boh"


def _enum_column(enum_cls):
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


def _new_order_id() -> str:
    return str(uuid.uuid4())


class Order(Base):
    """
    Main Order table.

    Tracks the lifecycle from customer submission to pickup. Rows are never
    deleted; cancellation is a terminal status.
    """
    __tablename__ = "orders"

    # Primary Key
    id = Column(String(36), primary_key=True, default=_new_order_id)
    order_number = Column(String(20), nullable=False, unique=True, index=True)

    # =========================================================================
    # WORKFLOW STATE
    # =========================================================================
    status = Column(
        _enum_column(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    # =========================================================================
    # PAYMENT INFO
    # =========================================================================
    payment_status = Column(
        _enum_column(PaymentStatus),
        default=PaymentStatus.UNPAID,
        nullable=False
    )
    payment_method = Column(String(50), nullable=True)  # card, link, etc.
    payment_reference = Column(String(100), nullable=True, unique=True, index=True)

    # =========================================================================
    # CUSTOMER INFORMATION
    # =========================================================================
    customer_name = Column(String(100), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)
    customer_phone = Column(String(20), nullable=False)
    pickup_time = Column(DateTime(timezone=True), nullable=True)
    special_instructions = Column(Text, nullable=True)

    # =========================================================================
    # PRICING
    # =========================================================================
    subtotal = Column(Numeric(10, 2), nullable=False)
    tax = Column(Numeric(10, 2), nullable=False)
    tip = Column(Numeric(10, 2), nullable=False, default=0)
    total = Column(Numeric(10, 2), nullable=False)
    boh_tip = Column(Numeric(10, 2), nullable=False, default=0)
    foh_tip = Column(Numeric(10, 2), nullable=False, default=0)

    # =========================================================================
    # TIMESTAMPS
    # =========================================================================
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    acknowledged_at = Column(DateTime(timezone=True), nullable=True)
    preparing_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    def __repr__(self):
        return f"<Order {self.order_number} - {self.status.value} - {self.payment_status.value}>"


class OrderItem(Base):
    """
    A line item snapshotted at submission time.

    Name and price are copied from the menu so historical orders stay
    stable when the menu changes.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position = Column(Integer, nullable=False, default=0)

    menu_item_id = Column(String(64), nullable=True)
    name = Column(String(100), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    modifiers = Column(JSON, nullable=True)
    special_instructions = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.quantity}x {self.name}>"


class OrderTransition(Base):
    """
    Append-only audit row written with every successful status change.
    """
    __tablename__ = "order_transitions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    from_status = Column(_enum_column(OrderStatus), nullable=False)
    to_status = Column(_enum_column(OrderStatus), nullable=False)
    actor_role = Column(_enum_column(ActorRole), nullable=False)
    actor_id = Column(String(100), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    def __repr__(self):
        return f"<OrderTransition {self.from_status.value}->{self.to_status.value} by {self.actor_role.value}>"
