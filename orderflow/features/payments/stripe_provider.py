"""
Stripe implementation of PaymentProvider.

Handles webhook signature verification, envelope parsing and the customer
metadata lookup used to resolve subscription owners.
"""
import json
import logging
from typing import Dict, Optional

import stripe
from pydantic import ValidationError

from orderflow.features.payments.provider import PaymentProviderError, PaymentWebhookError
from orderflow.models.payments import WebhookEvent, parse_webhook_event

logger = logging.getLogger("orderflow.payments")


class StripeProvider:
    def __init__(self, webhook_secret: Optional[str], secret_key: Optional[str] = None):
        if not webhook_secret:
            raise PaymentProviderError("STRIPE_WEBHOOK_SECRET not configured")
        self.webhook_secret = webhook_secret
        self.secret_key = secret_key
        if secret_key:
            stripe.api_key = secret_key

    def verify_webhook(self, headers: Dict[str, str], body: bytes) -> WebhookEvent:
        sig_header = headers.get("stripe-signature") or headers.get("Stripe-Signature")
        if not sig_header:
            raise PaymentWebhookError("Missing stripe-signature header")

        # Verify before parsing anything; the signature covers the raw body
        try:
            raw = body.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                raw, sig_header, self.webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except ValueError as e:
            raise PaymentWebhookError(f"Invalid payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise PaymentWebhookError(f"Invalid signature: {e}")

        try:
            payload = json.loads(raw)
        except ValueError as e:
            raise PaymentWebhookError(f"Invalid payload: {e}")
        if not isinstance(payload, dict):
            raise PaymentWebhookError("Invalid payload: expected a JSON object")

        try:
            return parse_webhook_event(payload)
        except ValidationError as e:
            raise PaymentWebhookError(f"Malformed {payload.get('type')} event: {e.error_count()} invalid field(s)")

    def customer_user_id(self, customer_id: str) -> Optional[str]:
        if not self.secret_key:
            return None
        try:
            customer = stripe.Customer.retrieve(customer_id)
        except stripe.StripeError as e:
            logger.warning("stripe.customer_lookup_failed", extra={"customer_id": customer_id, "error": str(e)})
            return None
        metadata = customer.get("metadata") or {}
        return metadata.get("userId") or metadata.get("user_id")
