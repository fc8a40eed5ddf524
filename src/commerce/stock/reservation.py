"""Sharded stock reservation — command, handler and the reservation engine.

A reservation draws units from randomly chosen shards, one transaction per
shard, until the requested quantity is covered. Random shard choice without
replacement keeps concurrent checkouts for a popular product from piling
onto the same counter. When the shards tried cannot cover the request,
every unit already taken is returned before ``InsufficientStockError`` is
raised.
"""

import random
from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError
from protean.fields import Identifier, Integer
from protean.utils.globals import current_domain

from commerce import config
from commerce.domain import commerce
from commerce.errors import InsufficientStockError, ShardConfigurationError
from commerce.locking import lock_key
from commerce.stock.restock import ShardIncrement, apply_increments
from commerce.stock.shard import StockShard, shard_key
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ReservedUnits:
    """Units taken from one shard on behalf of a reservation."""

    product_id: str
    shard_index: int
    quantity: int


@commerce.command(part_of="StockShard")
class TakeFromShard:
    """Take up to ``wanted`` units from a single shard."""

    product_id = Identifier(required=True)
    shard_index = Integer(required=True, min_value=0)
    wanted = Integer(required=True, min_value=1)


@commerce.command_handler(part_of=StockShard)
class TakeFromShardHandler:
    @handle(TakeFromShard)
    def take_from_shard(self, command):
        repo = current_domain.repository_for(StockShard)
        try:
            shard = repo.get(shard_key(command.product_id, command.shard_index))
        except ObjectNotFoundError:
            return 0

        available = shard.available or 0
        if available <= 0:
            return 0

        taken = min(available, command.wanted)
        shard.take(taken)
        repo.add(shard)
        return taken


def rollback(reserved) -> int:
    """Return every unit in ``reserved`` to the exact shard it came from."""
    if not reserved:
        return 0
    returned = apply_increments([ShardIncrement(r.product_id, r.shard_index, r.quantity) for r in reserved])
    logger.info("Rolled back reserved stock", entries=len(reserved), units=returned)
    return returned


def reserve(product_id, quantity, shard_count, context=None, rng=None) -> list[ReservedUnits]:
    """Reserve ``quantity`` units of a product across its stock shards.

    Tries at most ``MAX_SHARD_ATTEMPTS`` distinct shards. ``context`` is only
    used for log correlation (typically the order id).

    Raises:
        ShardConfigurationError: the product has no usable shard count.
        InsufficientStockError: the tried shards could not cover the request;
            anything already taken has been returned.
    """
    if not isinstance(shard_count, int) or isinstance(shard_count, bool) or shard_count <= 0:
        raise ShardConfigurationError(f"Product {product_id} has invalid shards configuration")
    if not isinstance(quantity, int) or quantity <= 0:
        raise ValueError(f"Quantity must be a positive integer, got {quantity!r}")

    rng = rng or random
    attempts = min(shard_count, config.MAX_SHARD_ATTEMPTS)
    candidates = rng.sample(range(shard_count), attempts)

    reserved: list[ReservedUnits] = []
    remaining = quantity

    try:
        for shard_index in candidates:
            if remaining <= 0:
                break
            try:
                taken = run_transaction(
                    TakeFromShard(product_id=product_id, shard_index=shard_index, wanted=remaining),
                    locks=[lock_key(StockShard, shard_key(product_id, shard_index))],
                )
            except ExpectedVersionError:
                # Shard is too contended right now; another shard may still cover us
                logger.warning(
                    "Shard reservation transaction failed",
                    product_id=product_id,
                    shard_index=shard_index,
                    context=context,
                )
                continue

            if taken > 0:
                reserved.append(ReservedUnits(str(product_id), shard_index, taken))
                remaining -= taken
    except Exception:
        rollback(reserved)
        raise

    if remaining > 0:
        rollback(reserved)
        raise InsufficientStockError(str(product_id), quantity, remaining)

    logger.info(
        "Stock reserved successfully",
        context=context,
        product_id=product_id,
        quantity=quantity,
        shards=[r.shard_index for r in reserved],
    )
    return reserved
