"""Configurable fake payment gateway for development and testing.

Simulates the gateway without any external calls:
- Payment intents are idempotent per ``idempotency_key``, as they are on Stripe
- Webhook signatures use Stripe's ``t=<timestamp>,v1=<hmac>`` header format,
  computed with HMAC-SHA256 over ``"<timestamp>.<payload>"``
- Intent creation can be switched to fail at runtime
"""

import hashlib
import hmac
import time
from uuid import uuid4

from commerce import config
from commerce.errors import GatewayError
from commerce.gateway.port import PaymentGateway, PaymentIntentResult

SIGNATURE_TOLERANCE_SECONDS = 300


def _as_text(payload) -> str:
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    return payload


def compute_signature(payload, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.{_as_text(payload)}".encode()
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


class FakeGateway(PaymentGateway):
    """Configurable fake payment gateway."""

    def __init__(self, webhook_secret: str | None = None) -> None:
        self.webhook_secret = webhook_secret or config.FAKE_WEBHOOK_SECRET
        self.should_succeed: bool = True
        self.failure_reason: str = "Gateway unavailable"
        self.calls: list[dict] = []
        self._intents: dict[str, PaymentIntentResult] = {}

    def configure(self, should_succeed: bool, failure_reason: str = "Gateway unavailable") -> None:
        """Configure gateway behavior at runtime."""
        self.should_succeed = should_succeed
        self.failure_reason = failure_reason

    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        self.calls.append(
            {
                "method": "create_payment_intent",
                "amount_cents": amount_cents,
                "currency": currency,
                "metadata": dict(metadata),
                "idempotency_key": idempotency_key,
            }
        )

        if not self.should_succeed:
            raise GatewayError(self.failure_reason)

        if idempotency_key in self._intents:
            return self._intents[idempotency_key]

        intent_id = f"pi_fake_{uuid4().hex[:16]}"
        intent = PaymentIntentResult(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{uuid4().hex[:12]}",
            amount=amount_cents,
            currency=currency,
        )
        self._intents[idempotency_key] = intent
        return intent

    def sign_payload(self, payload, timestamp: int | None = None) -> str:
        """Build a signature header for ``payload`` (used by tests and local tooling)."""
        timestamp = int(time.time()) if timestamp is None else timestamp
        return f"t={timestamp},v1={compute_signature(payload, timestamp, self.webhook_secret)}"

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not signature:
            return False

        parts = dict(part.split("=", 1) for part in signature.split(",") if "=" in part)
        try:
            timestamp = int(parts["t"])
            received = parts["v1"]
        except (KeyError, ValueError):
            return False

        if abs(time.time() - timestamp) > SIGNATURE_TOLERANCE_SECONDS:
            return False

        expected = compute_signature(payload, timestamp, self.webhook_secret)
        return hmac.compare_digest(expected, received)
