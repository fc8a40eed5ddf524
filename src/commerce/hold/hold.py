"""Hold aggregate (CQRS) — a time-boxed claim on reserved stock for one order.

The hold shares its identity with the order it backs. Holds are never
deleted; once out of ``held`` they remain as an audit trail.

State Machine:
    HELD → RELEASED | CONSUMED | EXPIRED
    CONSUMED → RELEASED (restock after a refund or dispute)
"""

from datetime import UTC, datetime, timedelta
from enum import Enum

from protean.exceptions import ValidationError
from protean.fields import DateTime, HasMany, Identifier, Integer, String

from commerce import config
from commerce.domain import commerce
from commerce.hold.events import HoldPlaced, HoldTransitioned


class HoldStatus(Enum):
    HELD = "held"
    CONSUMED = "consumed"
    RELEASED = "released"
    EXPIRED = "expired"


_VALID_TRANSITIONS = {
    HoldStatus.HELD: {HoldStatus.RELEASED, HoldStatus.CONSUMED, HoldStatus.EXPIRED},
    HoldStatus.CONSUMED: {HoldStatus.RELEASED},
    HoldStatus.RELEASED: set(),  # terminal
    HoldStatus.EXPIRED: set(),  # terminal
}

_TIMESTAMP_FIELDS = {
    HoldStatus.RELEASED: "released_at",
    HoldStatus.CONSUMED: "consumed_at",
    HoldStatus.EXPIRED: "expired_at",
}


@commerce.entity(part_of="Hold")
class HoldItem:
    """Units of one product covered by the hold."""

    position = Integer(required=True, min_value=0)
    product_id = Identifier(required=True)
    quantity = Integer(required=True, min_value=1)


@commerce.aggregate
class Hold:
    holder_id = Identifier(required=True)
    status = String(
        max_length=20,
        choices=HoldStatus,
        default=HoldStatus.HELD.value,
    )
    items = HasMany(HoldItem)
    expires_at = DateTime(required=True)
    created_at = DateTime(required=True)
    released_at = DateTime()
    consumed_at = DateTime()
    expired_at = DateTime()

    @classmethod
    def place(cls, hold_id, holder_id, items, ttl_minutes=None, now=None):
        """Create a hold over ``items``, a sequence of ``(product_id, quantity)``."""
        if not items:
            raise ValidationError({"items": ["A hold must cover at least one item"]})

        now = now or datetime.now(UTC)
        ttl = config.HOLD_TTL_MINUTES if ttl_minutes is None else ttl_minutes
        hold = cls(
            id=hold_id,
            holder_id=holder_id,
            expires_at=now + timedelta(minutes=ttl),
            created_at=now,
        )
        for position, (product_id, quantity) in enumerate(items):
            hold.add_items(HoldItem(position=position, product_id=product_id, quantity=quantity))

        hold.raise_(
            HoldPlaced(
                hold_id=str(hold.id),
                holder_id=str(holder_id),
                item_count=len(items),
                unit_count=hold.unit_count,
                expires_at=hold.expires_at,
                placed_at=now,
            )
        )
        return hold

    @property
    def unit_count(self) -> int:
        return sum(item.quantity for item in (self.items or []))

    def held_items(self) -> list[tuple[str, int]]:
        """Items as ``(product_id, quantity)`` pairs in their original order."""
        ordered = sorted(self.items or [], key=lambda item: item.position)
        return [(str(item.product_id), item.quantity) for item in ordered]

    def is_expired(self, as_of=None) -> bool:
        as_of = as_of or datetime.now(UTC)
        return self.expires_at <= as_of

    def _assert_can_transition(self, target_status: HoldStatus) -> None:
        current = HoldStatus(self.status)
        if target_status not in _VALID_TRANSITIONS.get(current, set()):
            raise ValidationError({"status": [f"Cannot transition from {current.value} to {target_status.value}"]})

    def transition_to(self, target_status: HoldStatus, now=None) -> None:
        self._assert_can_transition(target_status)
        now = now or datetime.now(UTC)
        previous = self.status

        self.status = target_status.value
        setattr(self, _TIMESTAMP_FIELDS[target_status], now)

        self.raise_(
            HoldTransitioned(
                hold_id=str(self.id),
                from_status=previous,
                to_status=target_status.value,
                unit_count=self.unit_count,
                transitioned_at=now,
            )
        )
