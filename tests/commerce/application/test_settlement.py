"""Application tests for settlement: gateway events driving orders and holds."""

import json

import pytest
import structlog
from protean import current_domain
from structlog.testing import capture_logs

from commerce.errors import PaymentIntegrityError
from commerce.hold.hold import Hold, HoldStatus
from commerce.hold.transitions import expire
from commerce.order.fulfillment import fulfill_order
from commerce.order.order import Order, OrderStatus
from commerce.settlement import handlers
from commerce.settlement.events import (
    CHARGE_REFUNDED,
    DISPUTE_CREATED,
    PAYMENT_FAILED,
    PAYMENT_SUCCEEDED,
    parse_gateway_event,
)
from commerce.settlement.handlers import dispatch_gateway_event, find_order_id_by_payment_reference
from commerce.settlement.webhook import receive_webhook


def _order(order_id="ord-001"):
    return current_domain.repository_for(Order).get(order_id)


def _hold(hold_id="ord-001"):
    return current_domain.repository_for(Hold).get(hold_id)


@pytest.fixture()
def settle(gateway_event):
    """Parse a payload built by ``gateway_event`` and dispatch it."""

    def _settle(event_type, obj, event_id=None):
        return dispatch_gateway_event(parse_gateway_event(gateway_event(event_type, obj, event_id)))

    return _settle


@pytest.fixture()
def settlement_logs(monkeypatch):
    """Capture what the settlement handlers log while the block runs."""
    monkeypatch.setattr(handlers, "logger", structlog.get_logger(handlers.__name__))
    with capture_logs() as logs:
        yield logs


def _succeeded(order, **overrides):
    obj = {
        "id": order.payment_reference,
        "amount_received": order.pricing.total_cents,
        "currency": "usd",
        "metadata": {"order_id": str(order.id)},
    }
    obj.update(overrides)
    return obj


def _failed(order, message="Your card was declined."):
    return {
        "id": order.payment_reference,
        "metadata": {"order_id": str(order.id)},
        "last_payment_error": {"message": message},
    }


def _dispute(order, payment_intent=None):
    return {
        "id": "dp_001",
        "payment_intent": payment_intent if payment_intent is not None else order.payment_reference,
        "reason": "fraudulent",
        "amount": order.pricing.total_cents,
        "currency": "usd",
    }


def _refund(order, refunded=True, amount_refunded=None):
    total = order.pricing.total_cents
    return {
        "id": "ch_001",
        "payment_intent": {"id": order.payment_reference, "object": "payment_intent"},
        "refunded": refunded,
        "amount_refunded": total if amount_refunded is None else amount_refunded,
        "amount": total,
    }


class TestPaymentSucceeded:
    def test_marks_paid_and_consumes_hold(self, pending_order, settle, shard_levels):
        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order)) is True

        order = _order()
        assert order.status == OrderStatus.PAID.value
        assert order.paid_at is not None
        assert _hold().status == HoldStatus.CONSUMED.value
        assert shard_levels() == [8]

    def test_second_success_is_a_no_op(self, pending_order, settle):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))

        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order)) is False
        assert _order().status == OrderStatus.PAID.value

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"amount_received": 100}, "amount"),
            ({"currency": "eur"}, "currency"),
            ({"id": "pi_someone_else"}, "payment_reference"),
        ],
    )
    def test_mismatch_leaves_order_pending(self, pending_order, settle, shard_levels, overrides, field):
        with pytest.raises(PaymentIntegrityError) as exc:
            settle(PAYMENT_SUCCEEDED, _succeeded(pending_order, **overrides))

        assert exc.value.field == field
        assert _order().status == OrderStatus.PENDING.value
        assert _hold().status == HoldStatus.HELD.value
        assert shard_levels() == [8]

    def test_uppercase_currency_matches(self, pending_order, settle):
        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order, currency="USD")) is True

    def test_missing_order_metadata(self, pending_order, settle):
        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order, metadata={})) is False
        assert _order().status == OrderStatus.PENDING.value

    def test_unknown_order(self, pending_order, settle):
        obj = _succeeded(pending_order, metadata={"order_id": "ord-missing"})

        assert settle(PAYMENT_SUCCEEDED, obj) is False

    def test_canceled_order_is_not_paid(self, pending_order, settle):
        settle(PAYMENT_FAILED, _failed(pending_order))

        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order)) is False
        assert _order().status == OrderStatus.CANCELED.value
        assert _hold().status == HoldStatus.RELEASED.value

    def test_paid_after_hold_expired_is_flagged_for_review(
        self, pending_order, settle, shard_levels, settlement_logs
    ):
        assert expire("ord-001") is True

        assert settle(PAYMENT_SUCCEEDED, _succeeded(pending_order)) is True

        assert _order().status == OrderStatus.PAID.value
        assert _hold().status == HoldStatus.EXPIRED.value
        assert shard_levels() == [10]
        flagged = [log for log in settlement_logs if log["log_level"] == "error"]
        assert [log["event"] for log in flagged] == [
            "Order paid but its hold could not be consumed, manual review required"
        ]
        assert flagged[0]["order_id"] == "ord-001"


class TestPaymentFailed:
    def test_cancels_and_releases_stock(self, pending_order, settle, shard_levels):
        assert settle(PAYMENT_FAILED, _failed(pending_order)) is True

        order = _order()
        assert order.status == OrderStatus.CANCELED.value
        assert order.status_reason == "Your card was declined."
        assert order.canceled_at is not None
        assert _hold().status == HoldStatus.RELEASED.value
        assert shard_levels() == [10]

    def test_repeat_does_not_restock_twice(self, pending_order, settle, shard_levels):
        settle(PAYMENT_FAILED, _failed(pending_order))

        assert settle(PAYMENT_FAILED, _failed(pending_order)) is False
        assert shard_levels() == [10]

    def test_paid_order_is_not_canceled(self, pending_order, settle, shard_levels):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))

        assert settle(PAYMENT_FAILED, _failed(pending_order)) is False
        assert _order().status == OrderStatus.PAID.value
        assert shard_levels() == [8]


class TestDisputeOpened:
    def test_marks_disputed_without_restock(self, pending_order, settle, shard_levels):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))

        assert settle(DISPUTE_CREATED, _dispute(pending_order)) is True

        order = _order()
        assert order.status == OrderStatus.DISPUTED.value
        assert order.status_reason == "fraudulent"
        assert _hold().status == HoldStatus.CONSUMED.value
        assert shard_levels() == [8]

    def test_second_dispute_is_a_no_op(self, pending_order, settle):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))
        settle(DISPUTE_CREATED, _dispute(pending_order))

        assert settle(DISPUTE_CREATED, _dispute(pending_order)) is False
        assert _order().status == OrderStatus.DISPUTED.value

    def test_pending_order_is_not_disputed(self, pending_order, settle):
        assert settle(DISPUTE_CREATED, _dispute(pending_order)) is False
        assert _order().status == OrderStatus.PENDING.value

    def test_unknown_payment_reference(self, pending_order, settle):
        assert settle(DISPUTE_CREATED, _dispute(pending_order, payment_intent="pi_unknown")) is False

    def test_missing_payment_reference(self, pending_order, settle):
        assert settle(DISPUTE_CREATED, _dispute(pending_order, payment_intent="")) is False

    def test_unresolved_dispute_is_logged_with_its_kind(self, pending_order, settle, settlement_logs):
        settle(DISPUTE_CREATED, _dispute(pending_order, payment_intent=""))
        settle(DISPUTE_CREATED, _dispute(pending_order, payment_intent="pi_unknown"))

        errors = [(log["event"], log["kind"]) for log in settlement_logs if log["log_level"] == "error"]
        assert errors == [
            ("Event missing payment_intent", "Dispute"),
            ("Order not found for payment reference", "Dispute"),
        ]


class TestChargeRefunded:
    def test_fulfilled_order_refund_restocks_once(self, pending_order, settle, shard_levels):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))
        fulfill_order("ord-001")

        assert settle(CHARGE_REFUNDED, _refund(pending_order)) is True
        order = _order()
        assert order.status == OrderStatus.REFUNDED.value
        assert order.refunded_at is not None
        assert _hold().status == HoldStatus.RELEASED.value
        assert shard_levels() == [10]

        assert settle(CHARGE_REFUNDED, _refund(pending_order)) is False
        assert shard_levels() == [10]

    def test_disputed_order_can_be_refunded(self, pending_order, settle, shard_levels):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))
        settle(DISPUTE_CREATED, _dispute(pending_order))

        assert settle(CHARGE_REFUNDED, _refund(pending_order)) is True
        assert _order().status == OrderStatus.REFUNDED.value
        assert shard_levels() == [10]

    def test_partial_refund_is_left_for_review(self, pending_order, settle, shard_levels):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))

        assert settle(CHARGE_REFUNDED, _refund(pending_order, refunded=False, amount_refunded=100)) is False
        assert _order().status == OrderStatus.PAID.value
        assert shard_levels() == [8]

    def test_pending_order_is_not_refunded(self, pending_order, settle):
        assert settle(CHARGE_REFUNDED, _refund(pending_order)) is False
        assert _order().status == OrderStatus.PENDING.value

    def test_restock_failure_keeps_refund(self, pending_order, settle, monkeypatch):
        settle(PAYMENT_SUCCEEDED, _succeeded(pending_order))

        def broken(hold_id):
            raise RuntimeError("store unavailable")

        monkeypatch.setattr(handlers, "restock_from_consumed", broken)

        assert settle(CHARGE_REFUNDED, _refund(pending_order)) is True
        assert _order().status == OrderStatus.REFUNDED.value
        assert _hold().status == HoldStatus.CONSUMED.value


class TestUnhandledEvents:
    def test_is_ignored(self, pending_order, settle):
        assert settle("customer.created", {"id": "cus_001"}) is False
        assert _order().status == OrderStatus.PENDING.value


class TestLookup:
    def test_find_order_by_payment_reference(self, pending_order):
        assert find_order_id_by_payment_reference(pending_order.payment_reference) == "ord-001"
        assert find_order_id_by_payment_reference("pi_unknown") is None


class TestReceiveWebhook:
    def test_duplicate_delivery_has_one_effect(self, pending_order, gateway, gateway_event, shard_levels):
        body = json.dumps(gateway_event(PAYMENT_FAILED, _failed(pending_order), event_id="evt_001")).encode()

        first = receive_webhook(body, gateway.sign_payload(body))
        second = receive_webhook(body, gateway.sign_payload(body))

        assert first == {"received": True, "status": "processed"}
        assert second == {"received": True, "status": "duplicate"}
        assert shard_levels() == [10]

    def test_settlement_error_is_still_acknowledged(self, pending_order, gateway, gateway_event):
        obj = _succeeded(pending_order, amount_received=1)
        body = json.dumps(gateway_event(PAYMENT_SUCCEEDED, obj)).encode()

        assert receive_webhook(body, gateway.sign_payload(body))["status"] == "processed"
        assert _order().status == OrderStatus.PENDING.value
