"""
Mock Payment Gateway Implementation

Simulates Stripe-like payment intents without making real API calls.
Used in development mode (ENV_MODE=development) and in tests to:
    - Run the whole order flow locally
    - Drive the kitchen simulation without a Stripe account
    - Force processor states (declined, processing, unreachable) on demand

Behavior:
    - Keeps intents in memory for the life of the process
    - Generates Stripe-like ids (pi_mock_xxx)
    - With auto_confirm on, settles each new intent right away and declines
      roughly failure_rate of them
"""

import asyncio
import json
import logging
import random
import uuid
from decimal import Decimal
from typing import Dict, Optional

from fulfillment.errors import PaymentProcessorUnavailable, PaymentReferenceUnknown
from fulfillment.services.payment.base import (
    SUCCEEDED,
    PaymentGateway,
    PaymentIntentResult,
    PaymentRecord,
)

logger = logging.getLogger(__name__)

REQUIRES_PAYMENT_METHOD = "requires_payment_method"


class MockPaymentGateway(PaymentGateway):
    """
    In-memory implementation of the payment gateway.

    Attributes:
        failure_rate: Probability an auto-confirmed intent is declined (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        auto_confirm: Settle intents as soon as they are created
        unavailable: Pretend the processor is unreachable

    Example:
        >>> gateway = MockPaymentGateway(min_latency=0, max_latency=0)
        >>> intent = await gateway.create_payment_intent(Decimal("12.50"))
        >>> gateway.mark_succeeded(intent.reference)
        >>> (await gateway.retrieve_payment(intent.reference)).status
        'succeeded'
    """

    # Simulated decline reasons (mimics real Stripe decline codes)
    DECLINE_REASONS = [
        "card_declined",
        "insufficient_funds",
        "expired_card",
        "incorrect_cvc",
    ]

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
        auto_confirm: bool = False,
        currency: str = "usd",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.auto_confirm = auto_confirm
        self.currency = currency
        self.unavailable = False
        self._intents: Dict[str, PaymentRecord] = {}

        logger.info(
            f"MockPaymentGateway initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s, auto_confirm={auto_confirm})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    def _generate_payment_intent_id(self) -> str:
        """Generate a Stripe-like payment intent ID."""
        return f"pi_mock_{uuid.uuid4().hex[:24]}"

    async def _simulate_latency(self) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _check_available(self) -> None:
        if self.unavailable:
            logger.error("Mock: Processor unavailable")
            raise PaymentProcessorUnavailable("Payment processor is unreachable")

    # =========================================================================
    # TEST HELPERS
    # =========================================================================

    def set_status(
        self,
        reference: str,
        status: str,
        payment_method: Optional[str] = None,
    ) -> None:
        """Force an intent into any processor status."""
        record = self._intents[reference]
        record.status = status
        if payment_method is not None:
            record.payment_method = payment_method

    def mark_succeeded(self, reference: str, payment_method: str = "card") -> None:
        self.set_status(reference, SUCCEEDED, payment_method=payment_method)

    def add_intent(
        self,
        amount: Decimal,
        status: str = REQUIRES_PAYMENT_METHOD,
        metadata: Optional[dict] = None,
        payment_method: Optional[str] = None,
    ) -> PaymentRecord:
        """Register an intent directly, skipping latency and auto-confirm."""
        record = PaymentRecord(
            reference=self._generate_payment_intent_id(),
            status=status,
            payment_method=payment_method,
            amount=Decimal(amount),
            currency=self.currency,
            metadata=dict(metadata or {}),
        )
        self._intents[record.reference] = record
        return record

    # =========================================================================
    # GATEWAY INTERFACE
    # =========================================================================

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentIntentResult:
        """
        Simulate creating a payment intent.

        The client_secret is fake and won't work with Stripe.js.
        """
        self._check_available()
        await self._simulate_latency()

        record = self.add_intent(amount, metadata=metadata)
        if currency:
            record.currency = currency

        if self.auto_confirm:
            if random.random() < self.failure_rate:
                decline = random.choice(self.DECLINE_REASONS)
                record.metadata["last_payment_error"] = decline
                logger.debug(f"Mock: Payment declined - {decline}")
            else:
                self.mark_succeeded(record.reference)

        logger.debug(f"Mock: Created payment intent {record.reference}")

        return PaymentIntentResult(
            reference=record.reference,
            client_secret=f"{record.reference}_secret_mock",
            amount=record.amount,
            currency=record.currency,
            status=record.status,
        )

    async def retrieve_payment(self, reference: str) -> PaymentRecord:
        self._check_available()
        await self._simulate_latency()

        record = self._intents.get(reference)
        if record is None:
            raise PaymentReferenceUnknown(reference)
        return PaymentRecord(
            reference=record.reference,
            status=record.status,
            payment_method=record.payment_method,
            amount=record.amount,
            currency=record.currency,
            metadata=dict(record.metadata),
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> Optional[dict]:
        """
        Simulate webhook verification.

        In mock mode the payload is parsed without cryptographic checks.
        """
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Mock: Invalid webhook payload")
            return None

    async def health_check(self) -> bool:
        logger.debug("Mock: Health check")
        return not self.unavailable
