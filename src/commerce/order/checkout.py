"""Checkout — reserve stock, open a payment intent, create the Hold + Order pair.

Flow:
    1. Validate the cart and shipping address, load and check every product
    2. Reserve each line from the product's stock shards
    3. Create the payment intent (idempotency key ``pi_<order_id>``)
    4. Create Hold and Order together in one unit of work

Any failure after step 2 has started returns every reserved unit to the
shard it came from before the error reaches the caller. The caller-supplied
order id is the idempotency key for the pair: a retry against an existing
pair fails with ``DuplicateOrderError`` instead of reserving again.
"""

import json
from collections import defaultdict
from dataclasses import asdict, dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String, Text
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import (
    FAILED_PRECONDITION,
    INVALID_ARGUMENT,
    NOT_FOUND,
    CheckoutError,
    DuplicateOrderError,
    ShardConfigurationError,
)
from commerce.gateway import get_gateway
from commerce.hold.hold import Hold, HoldStatus
from commerce.locking import lock_key
from commerce.order.order import Order
from commerce.order.pricing import Totals, calculate_totals
from commerce.product.product import Product
from commerce.stock.reservation import reserve, rollback
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)

REQUIRED_ADDRESS_FIELDS = ("name", "line1", "city", "state", "postal_code", "country")
OPTIONAL_ADDRESS_FIELDS = ("line2",)


@dataclass(frozen=True)
class CheckoutResult:
    order_id: str
    hold_status: str
    expires_at: str
    payment_client_secret: str

    def to_dict(self) -> dict:
        return asdict(self)


# ---------------------------------------------------------------------------
# Command and handler
# ---------------------------------------------------------------------------
@commerce.command(part_of="Order")
class PlaceHoldAndOrder:
    """Create a Hold and its Order in a single unit of work."""

    order_id = Identifier(required=True)
    holder_id = Identifier(required=True)
    items = Text(required=True)  # JSON list of {product_id, quantity, unit_price_cents}
    shipping_address = Text(required=True)  # JSON object
    subtotal_cents = Integer(required=True, min_value=0)
    tax_cents = Integer(required=True, min_value=0)
    shipping_cents = Integer(required=True, min_value=0)
    total_cents = Integer(required=True, min_value=0)
    currency = String(required=True, max_length=3)
    payment_reference = String(required=True, max_length=255)


def _exists(repo, identifier) -> bool:
    try:
        repo.get(identifier)
    except ObjectNotFoundError:
        return False
    return True


@commerce.command_handler(part_of=Order)
class PlaceHoldAndOrderHandler:
    @handle(PlaceHoldAndOrder)
    def place_hold_and_order(self, command):
        hold_repo = current_domain.repository_for(Hold)
        order_repo = current_domain.repository_for(Order)

        # Race protection: a concurrent checkout may have won since the pre-check
        if _exists(hold_repo, command.order_id) or _exists(order_repo, command.order_id):
            raise DuplicateOrderError(str(command.order_id))

        lines = json.loads(command.items)
        hold = Hold.place(
            hold_id=command.order_id,
            holder_id=command.holder_id,
            items=[(line["product_id"], line["quantity"]) for line in lines],
        )
        order = Order.place(
            order_id=command.order_id,
            holder_id=command.holder_id,
            lines=[(line["product_id"], line["quantity"], line["unit_price_cents"]) for line in lines],
            shipping_address=json.loads(command.shipping_address),
            totals=Totals(
                subtotal_cents=command.subtotal_cents,
                tax_cents=command.tax_cents,
                shipping_cents=command.shipping_cents,
                total_cents=command.total_cents,
            ),
            currency=command.currency,
            payment_reference=command.payment_reference,
            now=hold.created_at,
        )

        hold_repo.add(hold)
        order_repo.add(order)
        return hold.expires_at


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------
def _is_positive_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def validate_request(order_id, holder_id, items, shipping_address) -> None:
    if not order_id or not isinstance(order_id, str):
        raise CheckoutError("orderId is required", INVALID_ARGUMENT)
    if not holder_id:
        raise CheckoutError("A caller identity is required to checkout", INVALID_ARGUMENT)
    if not isinstance(items, list) or not items:
        raise CheckoutError("Cart items are required", INVALID_ARGUMENT)

    for item in items:
        product_id = item.get("product_id") if isinstance(item, dict) else None
        if not product_id or not isinstance(product_id, str):
            raise CheckoutError("Invalid productId in cart", INVALID_ARGUMENT)
        if not _is_positive_int(item.get("quantity")):
            raise CheckoutError(f"Invalid quantity for product {product_id}", INVALID_ARGUMENT)

    if not isinstance(shipping_address, dict):
        raise CheckoutError("Shipping address is required", INVALID_ARGUMENT)
    for field in REQUIRED_ADDRESS_FIELDS:
        value = shipping_address.get(field)
        if not value or not isinstance(value, str):
            raise CheckoutError(f"Shipping address {field} is required", INVALID_ARGUMENT)


def load_products(items) -> dict[str, Product]:
    """Load and check every product in the cart.

    Quantities for a product appearing on several lines count together
    against its per-customer limit.
    """
    repo = current_domain.repository_for(Product)
    requested: dict[str, int] = defaultdict(int)
    for item in items:
        requested[item["product_id"]] += item["quantity"]

    products: dict[str, Product] = {}
    for product_id, quantity in requested.items():
        try:
            product = repo.get(product_id)
        except ObjectNotFoundError:
            raise CheckoutError(f"Product {product_id} not found", NOT_FOUND)

        if not product.active:
            raise CheckoutError(f"Product {product_id} is not available", FAILED_PRECONDITION)
        if not product.has_valid_shards:
            raise ShardConfigurationError(f"Product {product_id} has invalid shards configuration")
        if product.max_per_customer and quantity > product.max_per_customer:
            raise CheckoutError(
                f"Maximum {product.max_per_customer} per customer for {product.name}",
                INVALID_ARGUMENT,
            )
        products[product_id] = product

    currencies = {product.currency.upper() for product in products.values()}
    if len(currencies) > 1:
        raise CheckoutError(
            "Cart contains products with different currencies. All items must have the same currency.",
            INVALID_ARGUMENT,
        )
    return products


def assert_new_order(order_id) -> None:
    if _exists(current_domain.repository_for(Hold), order_id) or _exists(
        current_domain.repository_for(Order), order_id
    ):
        raise DuplicateOrderError(order_id)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def checkout(order_id, holder_id, items, shipping_address) -> CheckoutResult:
    """Reserve stock for ``items`` and open a pending order.

    Args:
        order_id: Caller-supplied idempotency key for the Hold + Order pair.
        holder_id: Identity of the customer checking out.
        items: List of dicts with ``product_id`` and ``quantity``.
        shipping_address: Dict with name, line1, line2 (optional), city,
            state, postal_code, country.
    """
    validate_request(order_id, holder_id, items, shipping_address)
    assert_new_order(order_id)

    products = load_products(items)
    currency = next(iter(products.values())).currency.upper()
    lines = [(item["product_id"], item["quantity"], products[item["product_id"]].price_cents) for item in items]
    totals = calculate_totals((unit_price, quantity) for _, quantity, unit_price in lines)

    reserved = []
    try:
        for item in items:
            product = products[item["product_id"]]
            reserved.extend(reserve(item["product_id"], item["quantity"], product.shard_count, context=order_id))

        intent = get_gateway().create_payment_intent(
            amount_cents=totals.total_cents,
            currency=currency.lower(),
            metadata={"order_id": order_id, "holder_id": str(holder_id)},
            idempotency_key=f"pi_{order_id}",
        )

        address = {field: shipping_address.get(field) for field in REQUIRED_ADDRESS_FIELDS + OPTIONAL_ADDRESS_FIELDS}
        expires_at = run_transaction(
            PlaceHoldAndOrder(
                order_id=order_id,
                holder_id=holder_id,
                items=json.dumps(
                    [
                        {"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price}
                        for product_id, quantity, unit_price in lines
                    ]
                ),
                shipping_address=json.dumps(address),
                subtotal_cents=totals.subtotal_cents,
                tax_cents=totals.tax_cents,
                shipping_cents=totals.shipping_cents,
                total_cents=totals.total_cents,
                currency=currency,
                payment_reference=intent.id,
            ),
            locks=[lock_key(Hold, order_id), lock_key(Order, order_id)],
        )
    except Exception:
        rollback(reserved)
        raise

    logger.info(
        "Hold and order created successfully",
        order_id=order_id,
        holder_id=str(holder_id),
        total_cents=totals.total_cents,
        item_count=len(items),
    )
    return CheckoutResult(
        order_id=order_id,
        hold_status=HoldStatus.HELD.value,
        expires_at=expires_at.isoformat(),
        payment_client_secret=intent.client_secret,
    )
