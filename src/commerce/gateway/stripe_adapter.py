"""Stripe payment gateway adapter.

Uses the stripe-python SDK to create PaymentIntents and to verify webhook
signatures with the endpoint's signing secret. The API key is passed per
request so the module-level ``stripe.api_key`` is never mutated.
"""

import stripe
import structlog

from commerce.errors import GatewayError
from commerce.gateway.port import PaymentGateway, PaymentIntentResult

logger = structlog.get_logger(__name__)


class StripeGateway(PaymentGateway):
    """Production Stripe gateway adapter."""

    def __init__(self, api_key: str, webhook_secret: str) -> None:
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        try:
            intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
                api_key=self.api_key,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe payment intent creation failed", idempotency_key=idempotency_key, error=str(exc))
            raise GatewayError(f"Payment intent creation failed: {exc.user_message or exc}") from exc

        return PaymentIntentResult(
            id=intent.id,
            client_secret=intent.client_secret,
            amount=intent.amount,
            currency=intent.currency,
            status=intent.status,
        )

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as exc:
            logger.warning("Stripe webhook signature verification failed", error=str(exc))
            return False
        return True
