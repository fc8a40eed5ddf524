"""Tests for parsing payment gateway payloads into typed events."""

import pytest

from commerce.errors import MalformedEventError
from commerce.settlement.events import (
    ChargeRefunded,
    DisputeOpened,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
    decode_payload,
    extract_payment_reference,
    parse_gateway_event,
)


def _payload(event_type, obj, event_id="evt_001"):
    return {"id": event_id, "type": event_type, "data": {"object": obj}}


class TestExtractPaymentReference:
    def test_string_id(self):
        assert extract_payment_reference("pi_123") == "pi_123"

    def test_expanded_object(self):
        assert extract_payment_reference({"id": "pi_123", "amount": 100}) == "pi_123"

    @pytest.mark.parametrize("value", [None, "", {}, 42])
    def test_missing(self, value):
        assert extract_payment_reference(value) is None


class TestParsePaymentIntentEvents:
    def test_succeeded(self):
        event = parse_gateway_event(
            _payload(
                "payment_intent.succeeded",
                {
                    "id": "pi_123",
                    "amount_received": 6437,
                    "currency": "usd",
                    "metadata": {"order_id": "ord-001", "holder_id": "user-001"},
                },
            )
        )
        assert event == PaymentSucceeded(
            event_id="evt_001",
            payment_reference="pi_123",
            order_id="ord-001",
            amount_received=6437,
            currency="usd",
        )

    def test_succeeded_without_metadata(self):
        event = parse_gateway_event(_payload("payment_intent.succeeded", {"id": "pi_123"}))
        assert event.order_id is None

    def test_failed(self):
        event = parse_gateway_event(
            _payload(
                "payment_intent.payment_failed",
                {
                    "id": "pi_123",
                    "metadata": {"order_id": "ord-001"},
                    "last_payment_error": {"message": "Your card was declined."},
                },
            )
        )
        assert isinstance(event, PaymentFailed)
        assert event.order_id == "ord-001"
        assert event.failure_message == "Your card was declined."

    def test_intent_without_id_is_malformed(self):
        with pytest.raises(MalformedEventError):
            parse_gateway_event(_payload("payment_intent.succeeded", {"metadata": {}}))

    @pytest.mark.parametrize("event_type", ["payment_intent.succeeded", "payment_intent.payment_failed"])
    @pytest.mark.parametrize("metadata", ["ord-001", ["ord-001"], 7])
    def test_non_object_metadata_is_malformed(self, event_type, metadata):
        with pytest.raises(MalformedEventError, match="metadata"):
            parse_gateway_event(_payload(event_type, {"id": "pi_123", "metadata": metadata}))

    @pytest.mark.parametrize("last_error", ["card_declined", ["declined"], 402])
    def test_failed_with_non_object_error_has_no_message(self, last_error):
        event = parse_gateway_event(
            _payload(
                "payment_intent.payment_failed",
                {"id": "pi_123", "metadata": {"order_id": "ord-001"}, "last_payment_error": last_error},
            )
        )
        assert event.order_id == "ord-001"
        assert event.failure_message is None


class TestParseChargeEvents:
    def test_dispute_with_expanded_intent(self):
        event = parse_gateway_event(
            _payload(
                "charge.dispute.created",
                {"id": "dp_1", "payment_intent": {"id": "pi_123"}, "reason": "fraudulent", "amount": 6437},
            )
        )
        assert isinstance(event, DisputeOpened)
        assert event.payment_reference == "pi_123"
        assert event.reason == "fraudulent"

    def test_full_refund(self):
        event = parse_gateway_event(
            _payload(
                "charge.refunded",
                {"id": "ch_1", "payment_intent": "pi_123", "refunded": True, "amount": 6437, "amount_refunded": 6437},
            )
        )
        assert isinstance(event, ChargeRefunded)
        assert event.fully_refunded is True

    def test_partial_refund(self):
        event = parse_gateway_event(
            _payload(
                "charge.refunded",
                {"id": "ch_1", "payment_intent": "pi_123", "refunded": False, "amount": 6437, "amount_refunded": 1000},
            )
        )
        assert event.fully_refunded is False
        assert event.amount_refunded == 1000


class TestUnhandledAndMalformed:
    def test_unknown_type(self):
        event = parse_gateway_event(_payload("customer.created", {"id": "cus_1"}))
        assert event == UnhandledEvent(event_id="evt_001", event_type="customer.created")

    @pytest.mark.parametrize(
        "payload",
        [
            {"type": "charge.refunded", "data": {"object": {}}},
            {"id": "evt_1", "data": {"object": {}}},
            {"id": "evt_1", "type": "charge.refunded"},
            {"id": "evt_1", "type": "charge.refunded", "data": {"object": "nope"}},
        ],
    )
    def test_structure_errors(self, payload):
        with pytest.raises(MalformedEventError):
            parse_gateway_event(payload)

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b""])
    def test_decode_rejects_non_objects(self, body):
        with pytest.raises(MalformedEventError):
            decode_payload(body)

    def test_decode_object(self):
        assert decode_payload(b'{"id": "evt_1"}') == {"id": "evt_1"}
