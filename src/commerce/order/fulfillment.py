"""Order fulfillment — command and handler.

An operator marks a paid order as shipped to the customer. Fulfilled orders
can still be disputed or refunded.
"""

import structlog
from protean import handle
from protean.fields import Identifier
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.locking import lock_key
from commerce.order.order import Order
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


@commerce.command(part_of="Order")
class MarkOrderFulfilled:
    order_id = Identifier(required=True)


@commerce.command_handler(part_of=Order)
class MarkOrderFulfilledHandler:
    @handle(MarkOrderFulfilled)
    def mark_order_fulfilled(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)
        order.mark_fulfilled()
        repo.add(order)


def fulfill_order(order_id) -> None:
    run_transaction(MarkOrderFulfilled(order_id=order_id), locks=[lock_key(Order, order_id)])
    logger.info("Order fulfilled", order_id=order_id)
