"""
Workflow Error Taxonomy

Every caller-visible failure of the fulfillment core is a WorkflowError.
The HTTP layer renders them with their ``code`` and ``http_status``; none
of them is retried inside the core. Only errors flagged ``retryable`` are
meant to be retried by the caller, after re-reading the order.
"""

from typing import Optional


class WorkflowError(Exception):
    """Base class for caller-visible workflow failures."""

    code = "workflow_error"
    http_status = 400
    retryable = False

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": False,
            "error": self.code,
            "detail": self.message,
            "retryable": self.retryable,
        }


class OrderNotFound(WorkflowError):
    code = "not_found"
    http_status = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", order_id=order_id)


class OrderValidationError(WorkflowError):
    code = "validation_error"
    http_status = 400


class InvalidTransition(WorkflowError):
    """Requested status is not reachable from the current status."""
    code = "invalid_transition"
    http_status = 409


class OutOfWorkflow(WorkflowError):
    """The role acted on an order outside the statuses it works on."""
    code = "out_of_workflow"
    http_status = 409


class RoleForbidden(WorkflowError):
    """The transition exists, but belongs to another role."""
    code = "role_forbidden"
    http_status = 403


class PaymentRequired(WorkflowError):
    code = "payment_required"
    http_status = 402


class PaymentNotSucceeded(WorkflowError):
    """The processor reports a status other than succeeded."""
    code = "payment_not_succeeded"
    http_status = 402

    def __init__(self, processor_status: str, order_id: Optional[str] = None):
        super().__init__(
            f"Payment not succeeded. Status: {processor_status}",
            order_id=order_id,
        )
        self.processor_status = processor_status

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["processor_status"] = self.processor_status
        return data


class PaymentReferenceUnknown(WorkflowError):
    code = "payment_reference_unknown"
    http_status = 404

    def __init__(self, payment_reference: str, order_id: Optional[str] = None):
        super().__init__(
            f"Payment reference {payment_reference} is unknown to the processor",
            order_id=order_id,
        )
        self.payment_reference = payment_reference


class PaymentMismatch(WorkflowError):
    """The processor record belongs to another order or charge."""
    code = "payment_mismatch"
    http_status = 409

    def __init__(self, message: str, payment_reference: str, order_id: Optional[str] = None):
        super().__init__(message, order_id=order_id)
        self.payment_reference = payment_reference


class PaymentRequestRejected(WorkflowError):
    """The processor refused the request itself; retrying will not help."""
    code = "payment_request_rejected"
    http_status = 502


class PaymentProcessorUnavailable(WorkflowError):
    """The processor could not be reached; safe to retry later."""
    code = "payment_processor_unavailable"
    http_status = 503
    retryable = True


class Conflict(WorkflowError):
    """A concurrent writer changed the order between read and write."""
    code = "conflict"
    http_status = 409
    retryable = True


__all__ = [
    "WorkflowError",
    "OrderNotFound",
    "OrderValidationError",
    "InvalidTransition",
    "OutOfWorkflow",
    "RoleForbidden",
    "PaymentRequired",
    "PaymentNotSucceeded",
    "PaymentReferenceUnknown",
    "PaymentMismatch",
    "PaymentRequestRejected",
    "PaymentProcessorUnavailable",
    "Conflict",
]
