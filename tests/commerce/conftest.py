import pytest
from protean import current_domain

from commerce.gateway import set_gateway
from commerce.gateway.fake_adapter import FakeGateway
from commerce.product.seeding import SeedProduct


@pytest.fixture()
def gateway():
    fake = FakeGateway(webhook_secret="whsec_test")
    set_gateway(fake)
    return fake


@pytest.fixture()
def address():
    return {
        "name": "Jane Doe",
        "line1": "1 Market St",
        "line2": "Suite 200",
        "city": "San Francisco",
        "state": "CA",
        "postal_code": "94105",
        "country": "US",
    }


@pytest.fixture()
def seed_product():
    """Factory creating a product and its shards, returning the product id."""

    def _seed(product_id="prod-001", stock=10, shards=1, price_cents=2500, **overrides):
        command = SeedProduct(
            product_id=product_id,
            name=overrides.pop("name", f"Product {product_id}"),
            price_cents=price_cents,
            shard_count=shards,
            initial_stock=stock,
            **overrides,
        )
        return current_domain.process(command, asynchronous=False)

    return _seed


@pytest.fixture()
def place_order(gateway, address, seed_product):
    """Factory running a full checkout, returning the ``CheckoutResult``."""
    from commerce.order.checkout import checkout

    def _place(order_id="ord-001", items=None, holder_id="user-001"):
        items = items or [{"product_id": "prod-001", "quantity": 2}]
        return checkout(order_id=order_id, holder_id=holder_id, items=items, shipping_address=address)

    return _place


@pytest.fixture()
def shard_levels():
    """Returns a reader for ``available`` per shard index of a product."""
    from commerce.stock.shard import StockShard, shard_key

    def _levels(product_id="prod-001", shard_count=1):
        repo = current_domain.repository_for(StockShard)
        return [repo.get(shard_key(product_id, index)).available for index in range(shard_count)]

    return _levels


@pytest.fixture()
def gateway_event():
    """Factory for gateway webhook payloads in Stripe's event shape."""
    from uuid import uuid4

    def _event(event_type, obj, event_id=None):
        return {
            "id": event_id or f"evt_{uuid4().hex[:16]}",
            "type": event_type,
            "data": {"object": obj},
        }

    return _event


@pytest.fixture()
def pending_order(seed_product, place_order):
    """Check out 2 x ``prod-001`` from a 10-unit single-shard product.

    Returns the stored order; its total is 6437 USD cents.
    """
    from commerce.order.order import Order

    seed_product(stock=10, shards=1, price_cents=2500)
    place_order(order_id="ord-001", items=[{"product_id": "prod-001", "quantity": 2}])
    return current_domain.repository_for(Order).get("ord-001")


@pytest.fixture()
def run_concurrently():
    """Run each ``(fn, *args)`` call on its own thread, all released at once.

    Every thread pushes its own domain context. Returns ``(results, errors)``,
    each in completion order.
    """
    import threading

    from commerce.domain import commerce

    def _run(*calls):
        start = threading.Barrier(len(calls), timeout=5)
        guard = threading.Lock()
        results, errors = [], []

        def worker(fn, args):
            with commerce.domain_context():
                start.wait()
                try:
                    outcome = fn(*args)
                except Exception as exc:
                    with guard:
                        errors.append(exc)
                else:
                    with guard:
                        results.append(outcome)

        threads = [threading.Thread(target=worker, args=(call[0], call[1:])) for call in calls]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=10)

        assert not any(thread.is_alive() for thread in threads)
        return results, errors

    return _run
