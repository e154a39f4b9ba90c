"""
                Order Fulfillment Service

Back-office order workflow for a restaurant: customer intake, payment
gating, front-of-house confirmation and kitchen display stations working
the same orders concurrently.
"""

__version__ = "1.0.0"
