"""Product seeding — command and handler.

Creates a product together with its stock shards, spreading the initial
stock evenly across them. Used by operators and tests; the full catalogue
lifecycle lives outside this context.
"""

from protean import handle
from protean.exceptions import ValidationError
from protean.fields import Boolean, Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.product.product import Product
from commerce.stock.shard import StockShard, split_evenly


@commerce.command(part_of="Product")
class SeedProduct:
    """Create a product and partition its initial stock across shards."""

    product_id = Identifier()
    name = String(required=True, max_length=255)
    price_cents = Integer(required=True, min_value=0)
    currency = String(max_length=3, default="USD")
    shard_count = Integer()
    initial_stock = Integer(default=0, min_value=0)
    active = Boolean(default=True)
    max_per_customer = Integer()


@commerce.command_handler(part_of=Product)
class SeedProductHandler:
    @handle(SeedProduct)
    def seed_product(self, command):
        initial_stock = command.initial_stock or 0
        if initial_stock and not command.shard_count:
            raise ValidationError({"shard_count": ["Stock cannot be seeded without a shard count"]})

        extra = {"id": command.product_id} if command.product_id else {}
        product = Product.create(
            name=command.name,
            price_cents=command.price_cents,
            currency=command.currency or "USD",
            shard_count=command.shard_count,
            active=command.active if command.active is not None else True,
            max_per_customer=command.max_per_customer,
            **extra,
        )
        current_domain.repository_for(Product).add(product)

        if product.has_valid_shards:
            shard_repo = current_domain.repository_for(StockShard)
            for index, available in enumerate(split_evenly(initial_stock, product.shard_count)):
                shard_repo.add(StockShard.create(str(product.id), index, available))

        return str(product.id)
