"""
                        Services Module

Collaborators of the workflow core with the hybrid architecture pattern.
The payment processor has Mock (development) and Real (production)
implementations behind one gateway interface.

Services:
    - payment: Stripe payment intents
    - payment_gate: Ties processor confirmation to the order record
"""
