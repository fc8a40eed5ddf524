"""Order aggregate (CQRS) — price breakdown, payment linkage and settlement status.

The order id is supplied by the caller at checkout and doubles as the id of
the Hold backing it. The payment reference is issued by the payment gateway
when the order is placed and never changes afterwards.

State Machine:
    PENDING → PAID | CANCELED
    PAID → FULFILLED | DISPUTED | REFUNDED
    FULFILLED → DISPUTED | REFUNDED
    DISPUTED → REFUNDED
"""

from datetime import UTC, datetime
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String, ValueObject

from commerce.domain import commerce
from commerce.errors import PaymentIntegrityError
from commerce.order.events import OrderPlaced, OrderStatusChanged


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class OrderStatus(Enum):
    PENDING = "pending"
    PAID = "paid"
    FULFILLED = "fulfilled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"
    CANCELED = "canceled"


_VALID_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PAID, OrderStatus.CANCELED},
    OrderStatus.PAID: {OrderStatus.FULFILLED, OrderStatus.DISPUTED, OrderStatus.REFUNDED},
    OrderStatus.FULFILLED: {OrderStatus.DISPUTED, OrderStatus.REFUNDED},
    OrderStatus.DISPUTED: {OrderStatus.REFUNDED},
    OrderStatus.REFUNDED: set(),  # Terminal
    OrderStatus.CANCELED: set(),  # Terminal
}

_TIMESTAMP_FIELDS = {
    OrderStatus.PAID: "paid_at",
    OrderStatus.FULFILLED: "fulfilled_at",
    OrderStatus.REFUNDED: "refunded_at",
    OrderStatus.DISPUTED: "disputed_at",
    OrderStatus.CANCELED: "canceled_at",
}


# ---------------------------------------------------------------------------
# Value Objects
# ---------------------------------------------------------------------------
@commerce.value_object(part_of="Order")
class ShippingAddress:
    """Where the order ships, captured at checkout time."""

    name = String(required=True, max_length=255)
    line1 = String(required=True, max_length=255)
    line2 = String(max_length=255)
    city = String(required=True, max_length=100)
    state = String(required=True, max_length=100)
    postal_code = String(required=True, max_length=20)
    country = String(required=True, max_length=100)


@commerce.value_object(part_of="Order")
class PriceBreakdown:
    """Order amounts in integer minor currency units, locked at checkout."""

    subtotal_cents = Integer(required=True, min_value=0)
    tax_cents = Integer(required=True, min_value=0)
    shipping_cents = Integer(required=True, min_value=0)
    total_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------
@commerce.entity(part_of="Order")
class OrderItem:
    position = Integer(required=True, min_value=0)
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)
    unit_price_cents = Integer(required=True, min_value=0)


# ---------------------------------------------------------------------------
# Aggregate Root
# ---------------------------------------------------------------------------
@commerce.aggregate
class Order:
    holder_id = Identifier(required=True)
    status = String(
        max_length=20,
        choices=OrderStatus,
        default=OrderStatus.PENDING.value,
    )
    items = HasMany(OrderItem)
    shipping_address = ValueObject(ShippingAddress)
    pricing = ValueObject(PriceBreakdown)
    payment_reference = String(required=True, max_length=255)
    status_reason = String(max_length=500)
    created_at = DateTime(required=True)
    updated_at = DateTime()
    paid_at = DateTime()
    fulfilled_at = DateTime()
    refunded_at = DateTime()
    disputed_at = DateTime()
    canceled_at = DateTime()

    # -------------------------------------------------------------------
    # Factory method
    # -------------------------------------------------------------------
    @classmethod
    def place(cls, order_id, holder_id, lines, shipping_address, totals, currency, payment_reference, now=None):
        """Create a pending order.

        Args:
            order_id: Caller-supplied identifier, shared with the Hold.
            holder_id: The customer placing the order.
            lines: Sequence of ``(product_id, quantity, unit_price_cents)``.
            shipping_address: Dict with name, line1, line2, city, state,
                postal_code, country.
            totals: A ``pricing.Totals`` for the lines.
            currency: ISO currency code shared by every line.
            payment_reference: Payment intent id issued by the gateway.
        """
        if not lines:
            raise ValidationError({"items": ["An order must contain at least one item"]})

        now = now or datetime.now(UTC)
        order = cls(
            id=order_id,
            holder_id=holder_id,
            shipping_address=ShippingAddress(**shipping_address),
            pricing=PriceBreakdown(
                subtotal_cents=totals.subtotal_cents,
                tax_cents=totals.tax_cents,
                shipping_cents=totals.shipping_cents,
                total_cents=totals.total_cents,
                currency=currency.upper(),
            ),
            payment_reference=payment_reference,
            created_at=now,
            updated_at=now,
        )
        for position, (product_id, quantity, unit_price_cents) in enumerate(lines):
            order.add_items(
                OrderItem(
                    position=position,
                    product_id=product_id,
                    quantity=quantity,
                    unit_price_cents=unit_price_cents,
                )
            )

        order.raise_(
            OrderPlaced(
                order_id=str(order.id),
                holder_id=str(holder_id),
                total_cents=totals.total_cents,
                currency=order.pricing.currency,
                payment_reference=payment_reference,
                placed_at=now,
            )
        )
        return order

    # -------------------------------------------------------------------
    # State transition helpers
    # -------------------------------------------------------------------
    def can_transition_to(self, target_status: OrderStatus) -> bool:
        return target_status in _VALID_TRANSITIONS.get(OrderStatus(self.status), set())

    def _assert_can_transition(self, target_status: OrderStatus) -> None:
        if not self.can_transition_to(target_status):
            raise ValidationError({"status": [f"Cannot transition from {self.status} to {target_status.value}"]})

    def _transition(self, target_status: OrderStatus, reason=None) -> None:
        self._assert_can_transition(target_status)
        now = datetime.now(UTC)
        previous = self.status

        self.status = target_status.value
        self.status_reason = reason
        self.updated_at = now
        setattr(self, _TIMESTAMP_FIELDS[target_status], now)

        self.raise_(
            OrderStatusChanged(
                order_id=str(self.id),
                from_status=previous,
                to_status=target_status.value,
                reason=reason,
                changed_at=now,
            )
        )

    # -------------------------------------------------------------------
    # Settlement
    # -------------------------------------------------------------------
    def verify_payment(self, payment_reference, amount_cents, currency) -> None:
        """Refuse a settlement that does not match this order exactly."""
        if payment_reference != self.payment_reference:
            raise PaymentIntegrityError(str(self.id), "payment_reference", self.payment_reference, payment_reference)
        if amount_cents != self.pricing.total_cents:
            raise PaymentIntegrityError(str(self.id), "amount", self.pricing.total_cents, amount_cents)
        if (currency or "").lower() != self.pricing.currency.lower():
            raise PaymentIntegrityError(str(self.id), "currency", self.pricing.currency, currency)

    def mark_paid(self, payment_reference, amount_cents, currency) -> None:
        self._assert_can_transition(OrderStatus.PAID)
        self.verify_payment(payment_reference, amount_cents, currency)
        self._transition(OrderStatus.PAID)

    def cancel(self, reason=None) -> None:
        self._transition(OrderStatus.CANCELED, reason)

    def mark_fulfilled(self) -> None:
        self._transition(OrderStatus.FULFILLED)

    def mark_disputed(self, reason=None) -> None:
        self._transition(OrderStatus.DISPUTED, reason)

    def mark_refunded(self, reason=None) -> None:
        self._transition(OrderStatus.REFUNDED, reason)
