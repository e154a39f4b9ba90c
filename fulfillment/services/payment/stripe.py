"""
Stripe Payment Gateway Implementation

Production implementation using the official Stripe Python SDK.
Used when ENV_MODE=production or ENV_MODE=staging.

Requirements:
    - STRIPE_SECRET_KEY must be set in environment
    - STRIPE_WEBHOOK_SECRET for webhook verification

Security Notes:
    - Never log full card numbers or CVCs
    - Always verify webhook signatures
    - Payment status always comes from Stripe, never from the browser
"""

import asyncio
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import stripe

from fulfillment.core.config import get_settings
from fulfillment.errors import (
    PaymentProcessorUnavailable,
    PaymentReferenceUnknown,
    PaymentRequestRejected,
)
from fulfillment.services.payment.base import (
    PaymentGateway,
    PaymentIntentResult,
    PaymentRecord,
)

logger = logging.getLogger(__name__)


class StripePaymentGateway(PaymentGateway):
    """
    Production Stripe payment gateway.

    The Stripe SDK is synchronous; calls run in a worker thread so they
    don't block the event loop.

    Configuration:
        Requires STRIPE_SECRET_KEY environment variable.
        Uses STRIPE_WEBHOOK_SECRET for webhook verification.
    """

    def __init__(self):
        """
        Initialize Stripe with API key from settings.

        Raises:
            ValueError: If STRIPE_SECRET_KEY is not configured
        """
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

        # Configure Stripe SDK
        stripe.api_key = settings.stripe_secret_key
        stripe.api_version = "2023-10-16"  # Pin API version for stability

        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info(
            f"StripePaymentGateway initialized "
            f"(api_version={stripe.api_version})"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "stripe"

    def _convert_to_cents(self, amount: Decimal) -> int:
        """
        Convert dollar amount to cents for Stripe.

        Stripe expects amounts in the smallest currency unit (cents for USD).
        """
        return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))

    def _convert_from_cents(self, cents: Optional[int]) -> Optional[Decimal]:
        """Convert cents back to dollars."""
        if cents is None:
            return None
        return (Decimal(cents) / 100).quantize(Decimal("0.01"))

    async def create_payment_intent(
        self,
        amount: Decimal,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentIntentResult:
        """
        Create a PaymentIntent for client-side confirmation.

        Returns a client_secret that the frontend uses with Stripe.js
        to complete the payment.
        """
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=self._convert_to_cents(amount),
                currency=currency or self._currency,
                metadata={k: str(v) for k, v in (metadata or {}).items()},
                automatic_payment_methods={"enabled": True},
            )
        except (stripe.APIConnectionError, stripe.AuthenticationError) as e:
            logger.error(f"Stripe: Failed to create PaymentIntent - {e}")
            raise PaymentProcessorUnavailable(f"Stripe is unreachable: {e}")
        except stripe.InvalidRequestError as e:
            logger.error(f"Stripe: PaymentIntent request invalid - {e}")
            raise PaymentRequestRejected(f"Stripe rejected the request: {e}")
        except stripe.StripeError as e:
            logger.error(f"Stripe: Failed to create PaymentIntent - {e}")
            raise PaymentProcessorUnavailable(f"Stripe rejected the request: {e}")

        logger.debug(f"Stripe: PaymentIntent created - {intent.id}")

        return PaymentIntentResult(
            reference=intent.id,
            client_secret=intent.client_secret,
            amount=self._convert_from_cents(intent.amount),
            currency=intent.currency,
            status=intent.status,
        )

    async def retrieve_payment(self, reference: str) -> PaymentRecord:
        """
        Retrieve a PaymentIntent.

        The payment method is the first listed method type; Stripe fills it
        in once the customer has paid.
        """
        try:
            intent = await asyncio.to_thread(stripe.PaymentIntent.retrieve, reference)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing" or e.http_status == 404:
                logger.warning(f"Stripe: Unknown PaymentIntent {reference}")
                raise PaymentReferenceUnknown(reference)
            logger.error(f"Stripe: Invalid request - {e}")
            raise PaymentRequestRejected(f"Stripe rejected the request: {e}")
        except stripe.StripeError as e:
            logger.error(f"Stripe: Connection error - {e}")
            raise PaymentProcessorUnavailable(f"Stripe is unreachable: {e}")

        method_types = intent.get("payment_method_types") or []
        return PaymentRecord(
            reference=intent.id,
            status=intent.status,
            payment_method=method_types[0] if method_types else "card",
            amount=self._convert_from_cents(intent.get("amount")),
            currency=intent.get("currency") or self._currency,
            metadata=dict(intent.get("metadata") or {}),
        )

    async def verify_webhook(
        self,
        payload: bytes,
        signature: str,
    ) -> Optional[dict]:
        """
        Verify and parse a Stripe webhook event.

        Events are only accepted with a valid signature; an unset
        STRIPE_WEBHOOK_SECRET rejects every event.
        """
        if not self._webhook_secret:
            logger.warning("Stripe: Webhook secret not configured, rejecting event")
            return None

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                self._webhook_secret,
            )
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

        logger.debug(f"Stripe: Webhook verified - {event['type']}")
        return event

    async def health_check(self) -> bool:
        """
        Verify Stripe API connectivity.

        Makes a lightweight API call to verify credentials and connectivity.
        """
        try:
            await asyncio.to_thread(stripe.Account.retrieve)
            logger.debug("Stripe: Health check passed")
            return True

        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
