"""Domain events for the Order aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="Order")
class OrderPlaced:
    """An order was created against a fresh hold and payment intent."""

    __version__ = 1

    order_id = Identifier(required=True)
    holder_id = Identifier(required=True)
    total_cents = Integer(required=True)
    currency = String(required=True, max_length=3)
    payment_reference = String(required=True)
    placed_at = DateTime(required=True)


@commerce.event(part_of="Order")
class OrderStatusChanged:
    """An order moved along its settlement lifecycle."""

    __version__ = 1

    order_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    reason = String(max_length=500)
    changed_at = DateTime(required=True)
