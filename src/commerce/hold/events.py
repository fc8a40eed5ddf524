"""Domain events for the Hold aggregate."""

from protean.fields import DateTime, Identifier, Integer, String

from commerce.domain import commerce


@commerce.event(part_of="Hold")
class HoldPlaced:
    """Stock was reserved and bound to an order for a limited time."""

    __version__ = 1

    hold_id = Identifier(required=True)
    holder_id = Identifier(required=True)
    item_count = Integer(required=True)
    unit_count = Integer(required=True)
    expires_at = DateTime(required=True)
    placed_at = DateTime(required=True)


@commerce.event(part_of="Hold")
class HoldTransitioned:
    """A hold left one lifecycle state for another."""

    __version__ = 1

    hold_id = Identifier(required=True)
    from_status = String(required=True)
    to_status = String(required=True)
    unit_count = Integer(required=True)
    transitioned_at = DateTime(required=True)
