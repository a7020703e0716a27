"""
Payment provider protocol.

The webhook service only needs signature verification and a customer lookup;
everything Stripe-specific lives in stripe_provider.py.
"""
from typing import Dict, Optional, Protocol

from orderflow.models.payments import WebhookEvent


class PaymentProvider(Protocol):
    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        """
        Verify the webhook signature and parse the envelope.

        Raises:
            PaymentWebhookError: Missing/invalid signature or malformed payload
        """
        ...

    def customer_user_id(self, customer_id: str) -> Optional[str]:
        """Resolve our user id from the processor customer's metadata, if any."""
        ...


class PaymentProviderError(Exception):
    """Base exception for payment provider errors."""
    pass


class PaymentWebhookError(PaymentProviderError):
    """Webhook could not be verified or parsed. Nothing was mutated."""
    pass
