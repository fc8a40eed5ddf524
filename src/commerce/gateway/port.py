"""Payment gateway port (abstract interface).

Checkout needs exactly two things from a payment gateway: a payment intent
the client can complete, and a way to tell that a webhook delivery really
came from the gateway. FakeGateway (dev/test) and StripeGateway (production)
both implement this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class PaymentIntentResult:
    """A payment intent as created by the gateway.

    ``client_secret`` is handed to the caller once and never persisted.
    """

    id: str
    client_secret: str
    amount: int
    currency: str
    status: str = "requires_payment_method"


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_payment_intent(
        self,
        amount_cents: int,
        currency: str,
        metadata: dict,
        idempotency_key: str,
    ) -> PaymentIntentResult:
        """Create a payment intent for ``amount_cents`` in ``currency``."""
        ...

    @abstractmethod
    def verify_webhook_signature(
        self,
        payload: bytes,
        signature: str,
    ) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...
