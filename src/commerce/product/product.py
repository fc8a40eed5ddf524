"""Product aggregate (CQRS) — the sellable item and its stock partitioning.

Only the fields checkout needs live here: price, currency, availability and
how many stock shards the product's inventory is split across. Catalogue
management is handled elsewhere.

The shard count is fixed once configured. Stock documents are addressed by
``(product_id, shard_index)``, so changing the count after launch would orphan
or misaddress stock; repartitioning requires an offline migration.
"""

from datetime import UTC, datetime

from protean.exceptions import ValidationError
from protean.fields import Boolean, DateTime, Integer, String

from commerce.domain import commerce


@commerce.aggregate
class Product:
    name = String(required=True, max_length=255)
    price_cents = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="USD")
    active = Boolean(default=True)
    shard_count = Integer()  # None until stock is partitioned
    max_per_customer = Integer()
    created_at = DateTime()
    updated_at = DateTime()

    @classmethod
    def create(cls, name, price_cents, currency="USD", shard_count=None, active=True, max_per_customer=None, **kwargs):
        now = datetime.now(UTC)
        product = cls(
            name=name,
            price_cents=price_cents,
            currency=currency.upper(),
            active=active,
            max_per_customer=max_per_customer,
            created_at=now,
            updated_at=now,
            **kwargs,
        )
        if shard_count is not None:
            product.configure_shards(shard_count)
        return product

    @property
    def has_valid_shards(self) -> bool:
        return isinstance(self.shard_count, int) and self.shard_count > 0

    def configure_shards(self, shard_count):
        """Set the shard count. Allowed exactly once."""
        if not isinstance(shard_count, int) or shard_count <= 0:
            raise ValidationError({"shard_count": ["Shard count must be a positive integer"]})
        if self.shard_count is not None:
            raise ValidationError({"shard_count": [f"Shard count is already fixed at {self.shard_count}"]})
        self.shard_count = shard_count
        self.updated_at = datetime.now(UTC)

    def deactivate(self):
        self.active = False
        self.updated_at = datetime.now(UTC)
