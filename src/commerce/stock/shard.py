"""StockShard aggregate (CQRS) — one partition of a product's unreserved stock.

A product's available units are split across ``shard_count`` independent
counter documents so concurrent checkouts contend on different documents
instead of serializing on one. The sum of ``available`` across a product's
shards, plus units held by open holds, plus units permanently consumed, is
the product's total issued stock.

Counters only move down on the reservation path (``take``) and only move up
on the release/restock path (``give_back``).
"""

import hashlib
from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import DateTime, Identifier, Integer

from commerce.domain import commerce


def shard_key(product_id, shard_index) -> str:
    """Identity of the shard document for ``(product_id, shard_index)``."""
    return f"{product_id}:{shard_index}"


def hash_to_shard(seed_key, item_index: int, shard_count: int) -> int:
    """Deterministically map ``(seed_key, item_index)`` onto a shard index.

    Restocks must be reproducible and auditable, so they never pick shards at
    random.
    """
    if shard_count <= 1:
        return 0
    digest = hashlib.sha256(f"{seed_key}:{item_index}".encode()).digest()
    return int.from_bytes(digest[:8], "big") % shard_count


def split_evenly(quantity: int, shard_count: int) -> list[int]:
    """Spread ``quantity`` units over shards, remainder to the lowest indices."""
    base, remainder = divmod(quantity, shard_count)
    return [base + (1 if index < remainder else 0) for index in range(shard_count)]


@commerce.aggregate
class StockShard:
    product_id = Identifier(required=True)
    shard_index = Integer(required=True, min_value=0)
    available = Integer(default=0, min_value=0)
    updated_at = DateTime()

    @classmethod
    def create(cls, product_id, shard_index, available=0):
        return cls(
            id=shard_key(product_id, shard_index),
            product_id=product_id,
            shard_index=shard_index,
            available=available,
            updated_at=datetime.now(UTC),
        )

    def take(self, quantity: int) -> None:
        """Decrement available units for a reservation."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        if quantity > (self.available or 0):
            raise ValidationError(
                {"quantity": [f"Cannot take {quantity} units from shard holding {self.available}"]}
            )
        self.available = self.available - quantity
        self.updated_at = datetime.now(UTC)

    def give_back(self, quantity: int) -> None:
        """Increment available units on release, rollback or restock."""
        if quantity <= 0:
            raise ValidationError({"quantity": ["Quantity must be positive"]})
        self.available = (self.available or 0) + quantity
        self.updated_at = datetime.now(UTC)
