"""Caller-facing error taxonomy for checkout and settlement.

Each error carries a ``code`` that the API layer maps to an HTTP status.
Domain rule violations inside aggregates keep using Protean's
``ValidationError``; these classes cover the flows that span aggregates.
"""

INVALID_ARGUMENT = "invalid-argument"
NOT_FOUND = "not-found"
FAILED_PRECONDITION = "failed-precondition"
RESOURCE_EXHAUSTED = "resource-exhausted"
INTERNAL = "internal"


class CommerceError(Exception):
    code = INTERNAL

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class CheckoutError(CommerceError):
    """Checkout request rejected before any stock was held."""


class InsufficientStockError(CommerceError):
    code = RESOURCE_EXHAUSTED

    def __init__(self, product_id: str, requested: int, shortfall: int) -> None:
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Requested: {requested}, available: {requested - shortfall}"
        )
        self.product_id = product_id
        self.requested = requested
        self.shortfall = shortfall


class ShardConfigurationError(CommerceError):
    """Product has no usable shard count."""

    code = INTERNAL


class DuplicateOrderError(CommerceError):
    code = FAILED_PRECONDITION

    def __init__(self, order_id: str) -> None:
        super().__init__(f"Order {order_id} already exists. Please use a different order ID.")
        self.order_id = order_id


class GatewayConfigurationError(CommerceError):
    code = INTERNAL


class GatewayError(CommerceError):
    """The payment gateway rejected or failed a request."""

    code = INTERNAL


class PaymentIntegrityError(CommerceError):
    """A payment event does not match the order it claims to settle."""

    code = FAILED_PRECONDITION

    def __init__(self, order_id: str, field: str, expected, received) -> None:
        super().__init__(f"{field} mismatch for order {order_id}: expected {expected}, got {received}")
        self.order_id = order_id
        self.field = field
        self.expected = expected
        self.received = received


class MalformedEventError(CommerceError):
    code = INVALID_ARGUMENT


class WebhookSignatureError(CommerceError):
    """A webhook payload failed signature verification."""

    code = INVALID_ARGUMENT
