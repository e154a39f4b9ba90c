"""
Payment Gateway Factory

Provides a single entry point for obtaining a payment gateway instance.
The rest of the application stays agnostic about which processor is used.

Usage:
    from fulfillment.services.payment import get_payment_gateway

    gateway = get_payment_gateway()
    record = await gateway.retrieve_payment("pi_123")

Environment Switching:
    - ENV_MODE=development → MockPaymentGateway (no API calls)
    - ENV_MODE=staging → StripePaymentGateway (test keys)
    - ENV_MODE=production → StripePaymentGateway (live keys)
"""

import logging
from functools import lru_cache

from fulfillment.core.config import get_settings
from fulfillment.services.payment.base import (
    SUCCEEDED,
    PaymentGateway,
    PaymentIntentResult,
    PaymentRecord,
)
from fulfillment.services.payment.mock import MockPaymentGateway
from fulfillment.services.payment.stripe import StripePaymentGateway

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_gateway() -> PaymentGateway:
    """
    Get the configured payment gateway instance.

    The instance is cached so the mock keeps its intents between requests.

    Raises:
        ValueError: If not in development mode and STRIPE_SECRET_KEY is unset
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Gateway: Using MockPaymentGateway (development mode)")
        return MockPaymentGateway(
            failure_rate=0.10,  # 10% simulated declines
            min_latency=0.05,
            max_latency=0.2,
            auto_confirm=True,
            currency=settings.stripe_currency,
        )

    logger.info(
        f"Payment Gateway: Using StripePaymentGateway "
        f"({settings.env_mode.value} mode)"
    )
    return StripePaymentGateway()


def reset_payment_gateway() -> None:
    """
    Clear the cached payment gateway instance.

    The next call to get_payment_gateway() will create a new instance.
    """
    get_payment_gateway.cache_clear()
    logger.debug("Payment gateway cache cleared")


__all__ = [
    "get_payment_gateway",
    "reset_payment_gateway",
    "PaymentGateway",
    "PaymentRecord",
    "PaymentIntentResult",
    "MockPaymentGateway",
    "StripePaymentGateway",
    "SUCCEEDED",
]
