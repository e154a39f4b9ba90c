"""
Payment Gateway Abstract Base Class

Defines the contract the Payment Gate relies on. Both MockPaymentGateway
and StripePaymentGateway implement it, so confirmation behaves the same
whichever processor is active.

Design Pattern: Strategy Pattern
    - The processor is chosen at startup from ENV_MODE
    - The gate only ever asks the processor for its authoritative record
      and never trusts a client-supplied payment status
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

# Processor status that counts as paid
SUCCEEDED = "succeeded"


@dataclass
class PaymentRecord:
    """
    The processor's view of a payment intent.

    Attributes:
        reference: Processor payment-intent id (Stripe format: pi_xxx)
        status: Processor status, reported verbatim (e.g. "succeeded",
            "requires_payment_method", "processing")
        payment_method: Payment method type used, if known (card, link, ...)
        amount: Amount in dollars
        currency: Currency code (e.g., "usd")
        metadata: Key-value data attached when the intent was created
    """
    reference: str
    status: str
    payment_method: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: str = "usd"
    metadata: dict = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCEEDED

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "reference": self.reference,
            "status": self.status,
            "payment_method": self.payment_method,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "metadata": self.metadata,
        }


@dataclass
class PaymentIntentResult:
    """
    A freshly created payment intent.

    Attributes:
        reference: Processor payment-intent id
        client_secret: Secret the browser uses to complete the payment
        amount: Amount in dollars
        currency: Currency code
        status: Initial processor status
    """
    reference: str
    client_secret: str
    amount: Decimal
    currency: str = "usd"
    status: str = "requires_payment_method"


class PaymentGateway(ABC):
    """
    Abstract base class for payment processors.

    Implementations raise PaymentReferenceUnknown for references the
    processor has never issued and PaymentProcessorUnavailable when it
    cannot be reached. They never raise for a payment that simply has not
    succeeded; that is reported through PaymentRecord.status.

    Example:
        >>> gateway = get_payment_gateway()  # Mock or Stripe
        >>> record = await gateway.retrieve_payment("pi_123")
        >>> record.succeeded
        True
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """
        Return the name of the payment provider.

        Returns:
            str: Provider name (e.g., "mock", "stripe")
        """
        pass

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentIntentResult:
        """
        Create a payment intent for client-side confirmation.

        Args:
            amount: Amount in dollars
            currency: Currency code (defaults to the configured currency)
            metadata: Additional data to attach (the order id lives here)
        """
        pass

    @abstractmethod
    async def retrieve_payment(self, reference: str) -> PaymentRecord:
        """
        Fetch the authoritative record for a payment intent.

        Raises:
            PaymentReferenceUnknown: The processor does not know `reference`
            PaymentProcessorUnavailable: The processor could not be reached
        """
        pass

    @abstractmethod
    async def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> Optional[dict]:
        """
        Verify and parse a webhook from the payment provider.

        Returns:
            dict: Parsed webhook event if valid, None if invalid
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the payment processor.

        Returns:
            bool: True if the processor is reachable and operational
        """
        pass
