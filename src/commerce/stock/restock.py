"""Returning units to stock shards — command, handler and restock planning.

Increments are grouped into batches of at most ``MAX_BATCH_WRITES`` shard
updates; each batch is one ``ReturnToShards`` command and therefore one
atomic unit of work. Batches commit sequentially, so a failure part-way
through leaves earlier batches committed and later ones untouched.
"""

import json
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Text
from protean.utils.globals import current_domain

from commerce import config
from commerce.domain import commerce
from commerce.locking import lock_key
from commerce.product.product import Product
from commerce.stock.shard import StockShard, hash_to_shard, shard_key
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ShardIncrement:
    product_id: str
    shard_index: int
    quantity: int


@commerce.command(part_of="StockShard")
class ReturnToShards:
    """Increment a batch of shards atomically."""

    increments = Text(required=True)  # JSON list of {product_id, shard_index, quantity}


@commerce.command_handler(part_of=StockShard)
class ReturnToShardsHandler:
    @handle(ReturnToShards)
    def return_to_shards(self, command):
        repo = current_domain.repository_for(StockShard)
        total = 0
        for entry in json.loads(command.increments):
            try:
                shard = repo.get(shard_key(entry["product_id"], entry["shard_index"]))
            except ObjectNotFoundError:
                shard = StockShard.create(entry["product_id"], entry["shard_index"])
            shard.give_back(entry["quantity"])
            repo.add(shard)
            total += entry["quantity"]
        return total


def _merge(increments):
    """Collapse increments aimed at the same shard into one write."""
    merged: dict[tuple[str, int], int] = {}
    for inc in increments:
        if inc.quantity <= 0:
            continue
        key = (str(inc.product_id), int(inc.shard_index))
        merged[key] = merged.get(key, 0) + inc.quantity
    return [ShardIncrement(product_id, index, quantity) for (product_id, index), quantity in merged.items()]


def _chunks(increments, size):
    for start in range(0, len(increments), size):
        yield increments[start : start + size]


def apply_increments(increments) -> int:
    """Commit shard increments in sequential batches. Returns units returned."""
    writes = _merge(increments)
    if not writes:
        return 0

    batch_size = max(1, config.MAX_BATCH_WRITES)
    returned = 0
    batches = 0
    for chunk in _chunks(writes, batch_size):
        payload = json.dumps(
            [{"product_id": w.product_id, "shard_index": w.shard_index, "quantity": w.quantity} for w in chunk]
        )
        returned += run_transaction(
            ReturnToShards(increments=payload),
            locks=[lock_key(StockShard, shard_key(w.product_id, w.shard_index)) for w in chunk],
        )
        batches += 1

    logger.info("Shard increments committed", writes=len(writes), batches=batches, units=returned)
    return returned


def _shard_count_for(product_id, cache: dict) -> int:
    if product_id not in cache:
        try:
            product = current_domain.repository_for(Product).get(product_id)
            count = product.shard_count if product.has_valid_shards else None
        except ObjectNotFoundError:
            count = None
        if count is None:
            logger.warning(
                "Product has no shard configuration, restocking across default shards",
                product_id=product_id,
                shard_count=config.DEFAULT_RESTOCK_SHARD_COUNT,
            )
            count = config.DEFAULT_RESTOCK_SHARD_COUNT
        cache[product_id] = count
    return cache[product_id]


def plan_restock(items, seed_key) -> list[ShardIncrement]:
    """Map each ``(product_id, quantity)`` item onto a deterministic shard."""
    cache: dict = {}
    plan = []
    for index, (product_id, quantity) in enumerate(items):
        shard_count = _shard_count_for(str(product_id), cache)
        plan.append(ShardIncrement(str(product_id), hash_to_shard(seed_key, index, shard_count), quantity))
    return plan


def restock(items, seed_key) -> int:
    """Return the units of ``items`` to their products' shards.

    ``items`` is an ordered sequence of ``(product_id, quantity)`` pairs; the
    shard for each is derived from ``(seed_key, position)`` so the same call
    always targets the same shards.
    """
    return apply_increments(plan_restock(items, seed_key))
