"""
Order Transition Table (Pure, Deterministic)

One data-driven table answers every "may this role move this order" question
for both the front-of-house and the kitchen surfaces. No I/O, no clock and
no database: callers pass in what they read and get a TransitionDecision back.

Transition graph:
    pending      -> confirmed | cancelled
    confirmed    -> acknowledged | cancelled
    acknowledged -> preparing | cancelled
    preparing    -> ready
    ready        -> completed
    completed, cancelled (terminal)
"""

import enum
from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Tuple, Union

from fulfillment.errors import (
    InvalidTransition,
    OutOfWorkflow,
    PaymentRequired,
    RoleForbidden,
)
from fulfillment.models import ActorRole, OrderStatus, PaymentStatus


class Rejection(str, enum.Enum):
    """Why a transition request was refused."""
    INVALID_TRANSITION = "invalid_transition"
    OUT_OF_WORKFLOW = "out_of_workflow"
    ROLE_FORBIDDEN = "role_forbidden"
    PAYMENT_REQUIRED = "payment_required"


_REJECTION_ERRORS = {
    Rejection.INVALID_TRANSITION: InvalidTransition,
    Rejection.OUT_OF_WORKFLOW: OutOfWorkflow,
    Rejection.ROLE_FORBIDDEN: RoleForbidden,
    Rejection.PAYMENT_REQUIRED: PaymentRequired,
}


@dataclass(frozen=True)
class TransitionDecision:
    """
    Result of evaluating a transition request.

    Attributes:
        allowed: Whether the request may be written
        stamp_field: Order column to stamp when allowed
        rejection: Rejection kind when refused
        reason: Human-readable explanation when refused
    """
    allowed: bool
    stamp_field: Optional[str] = None
    rejection: Optional[Rejection] = None
    reason: Optional[str] = None

    def raise_if_rejected(self, order_id: Optional[str] = None) -> None:
        """Raise the matching WorkflowError when the request was refused."""
        if self.allowed:
            return
        error_cls = _REJECTION_ERRORS[self.rejection]
        raise error_cls(self.reason, order_id=order_id)

    @classmethod
    def reject(cls, rejection: Rejection, reason: str) -> "TransitionDecision":
        return cls(allowed=False, rejection=rejection, reason=reason)


# =============================================================================
# TABLE
# =============================================================================

# (from_status, to_status) -> role that owns the edge
TRANSITIONS: Dict[Tuple[OrderStatus, OrderStatus], ActorRole] = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED): ActorRole.FOH,
    (OrderStatus.PENDING, OrderStatus.CANCELLED): ActorRole.FOH,
    (OrderStatus.CONFIRMED, OrderStatus.ACKNOWLEDGED): ActorRole.BOH,
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED): ActorRole.FOH,
    (OrderStatus.ACKNOWLEDGED, OrderStatus.PREPARING): ActorRole.BOH,
    (OrderStatus.ACKNOWLEDGED, OrderStatus.CANCELLED): ActorRole.FOH,
    (OrderStatus.PREPARING, OrderStatus.READY): ActorRole.BOH,
    (OrderStatus.READY, OrderStatus.COMPLETED): ActorRole.FOH,
}

# Target statuses each role may request
OWNED_TARGETS: Dict[ActorRole, FrozenSet[OrderStatus]] = {
    role: frozenset(to for (_, to), owner in TRANSITIONS.items() if owner == role)
    for role in ActorRole
}

# Statuses the kitchen works on; anything else is not its business
BOH_WINDOW: FrozenSet[OrderStatus] = frozenset([
    OrderStatus.CONFIRMED,
    OrderStatus.ACKNOWLEDGED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
])

TERMINAL_STATUSES: FrozenSet[OrderStatus] = frozenset([
    OrderStatus.COMPLETED,
    OrderStatus.CANCELLED,
])

STAMP_FIELDS: Dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.ACKNOWLEDGED: "acknowledged_at",
    OrderStatus.PREPARING: "preparing_at",
    OrderStatus.READY: "ready_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
}

# Stage order along the happy path, used for reasons and stamp ordering
STAGES: Tuple[OrderStatus, ...] = (
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.ACKNOWLEDGED,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.COMPLETED,
)

_VERBS = {
    OrderStatus.CONFIRMED: "confirmed",
    OrderStatus.ACKNOWLEDGED: "acknowledged",
    OrderStatus.PREPARING: "marked preparing",
    OrderStatus.READY: "marked ready",
    OrderStatus.COMPLETED: "completed",
    OrderStatus.CANCELLED: "cancelled",
}


def is_edge(current: OrderStatus, requested: OrderStatus) -> bool:
    """True if (current, requested) is in the transition graph."""
    return (current, requested) in TRANSITIONS


def _coerce_status(value: Union[OrderStatus, str, None]) -> Optional[OrderStatus]:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        return None


def _not_an_edge_reason(current: OrderStatus, requested: OrderStatus) -> str:
    if current == requested:
        return f"order is already {current.value}"
    if current in TERMINAL_STATUSES:
        return f"order is {current.value} and can no longer change"
    if requested == OrderStatus.CANCELLED:
        return f"order can no longer be cancelled once {current.value}"
    predecessors = [src for (src, dst) in TRANSITIONS if dst == requested]
    required = predecessors[0].value if predecessors else "pending"
    if STAGES.index(current) > STAGES.index(requested):
        return (
            f"order cannot move back from {current.value} "
            f"to {requested.value}"
        )
    return (
        f"order must be {required} before it can be "
        f"{_VERBS[requested]}"
    )


def evaluate_transition(
    current: OrderStatus,
    requested: Union[OrderStatus, str],
    role: ActorRole,
    payment_status: PaymentStatus,
) -> TransitionDecision:
    """
    Decide whether `role` may move an order from `current` to `requested`.

    Checks run in a fixed order so every caller gets the same answer:
    unknown target, role ownership, kitchen window, graph edge, payment.
    """
    target = _coerce_status(requested)
    if target is None or target == OrderStatus.PENDING:
        label = target.value if target is not None else requested
        return TransitionDecision.reject(
            Rejection.INVALID_TRANSITION,
            f"'{label}' is not a status an order can be moved to",
        )

    if target not in OWNED_TARGETS[role]:
        return TransitionDecision.reject(
            Rejection.ROLE_FORBIDDEN,
            f"{role.value} stations cannot mark orders {target.value}",
        )

    if role == ActorRole.BOH and current not in BOH_WINDOW:
        return TransitionDecision.reject(
            Rejection.OUT_OF_WORKFLOW,
            f"order is {current.value} and not in the kitchen workflow",
        )

    if not is_edge(current, target):
        return TransitionDecision.reject(
            Rejection.INVALID_TRANSITION,
            _not_an_edge_reason(current, target),
        )

    if target == OrderStatus.CONFIRMED and payment_status != PaymentStatus.PAID:
        return TransitionDecision.reject(
            Rejection.PAYMENT_REQUIRED,
            "order must be paid before it can be confirmed",
        )

    return TransitionDecision(allowed=True, stamp_field=STAMP_FIELDS[target])


__all__ = [
    "Rejection",
    "TransitionDecision",
    "TRANSITIONS",
    "OWNED_TARGETS",
    "BOH_WINDOW",
    "TERMINAL_STATUSES",
    "STAMP_FIELDS",
    "STAGES",
    "is_edge",
    "evaluate_transition",
]
