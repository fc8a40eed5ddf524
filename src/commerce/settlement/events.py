"""Payment gateway events as a tagged union.

Gateway payloads are loosely typed JSON (``{"id", "type", "data": {"object"}}``
in Stripe's format). They are parsed once, here, into one frozen dataclass per
event kind so settlement handlers only ever see typed fields.
"""

import json
from dataclasses import dataclass

from commerce.errors import MalformedEventError

PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"
DISPUTE_CREATED = "charge.dispute.created"
CHARGE_REFUNDED = "charge.refunded"


@dataclass(frozen=True)
class PaymentSucceeded:
    event_id: str
    payment_reference: str
    order_id: str | None
    amount_received: int | None
    currency: str | None


@dataclass(frozen=True)
class PaymentFailed:
    event_id: str
    payment_reference: str
    order_id: str | None
    failure_message: str | None = None


@dataclass(frozen=True)
class DisputeOpened:
    event_id: str
    dispute_id: str | None
    payment_reference: str | None
    reason: str | None = None
    amount: int | None = None
    currency: str | None = None


@dataclass(frozen=True)
class ChargeRefunded:
    event_id: str
    charge_id: str | None
    payment_reference: str | None
    fully_refunded: bool
    amount_refunded: int | None = None
    amount: int | None = None


@dataclass(frozen=True)
class UnhandledEvent:
    event_id: str
    event_type: str


GatewayEvent = PaymentSucceeded | PaymentFailed | DisputeOpened | ChargeRefunded | UnhandledEvent


def extract_payment_reference(value) -> str | None:
    """Normalise the gateway's polymorphic payment intent field.

    The field is either the intent id, the expanded intent object, or absent.
    """
    if not value:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id") or None
    return None


def decode_payload(body) -> dict:
    try:
        payload = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise MalformedEventError("Webhook payload is not valid JSON") from exc
    if not isinstance(payload, dict):
        raise MalformedEventError("Webhook payload must be a JSON object")
    return payload


def parse_gateway_event(payload: dict) -> GatewayEvent:
    event_id = payload.get("id")
    event_type = payload.get("type")
    if not event_id or not isinstance(event_id, str):
        raise MalformedEventError("Event id is missing")
    if not event_type or not isinstance(event_type, str):
        raise MalformedEventError(f"Event {event_id} has no type")

    data = payload.get("data")
    obj = data.get("object") if isinstance(data, dict) else None
    if not isinstance(obj, dict):
        raise MalformedEventError(f"Event {event_id} has no data object")

    if event_type in (PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        intent_id = obj.get("id")
        if not intent_id:
            raise MalformedEventError(f"Event {event_id} payment intent has no id")
        metadata = obj.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise MalformedEventError(f"Event {event_id} payment intent metadata is not an object")
        order_id = metadata.get("order_id") or None

        if event_type == PAYMENT_SUCCEEDED:
            return PaymentSucceeded(
                event_id=event_id,
                payment_reference=intent_id,
                order_id=order_id,
                amount_received=obj.get("amount_received"),
                currency=obj.get("currency"),
            )
        last_error = obj.get("last_payment_error")
        return PaymentFailed(
            event_id=event_id,
            payment_reference=intent_id,
            order_id=order_id,
            failure_message=last_error.get("message") if isinstance(last_error, dict) else None,
        )

    if event_type == DISPUTE_CREATED:
        return DisputeOpened(
            event_id=event_id,
            dispute_id=obj.get("id"),
            payment_reference=extract_payment_reference(obj.get("payment_intent")),
            reason=obj.get("reason"),
            amount=obj.get("amount"),
            currency=obj.get("currency"),
        )

    if event_type == CHARGE_REFUNDED:
        return ChargeRefunded(
            event_id=event_id,
            charge_id=obj.get("id"),
            payment_reference=extract_payment_reference(obj.get("payment_intent")),
            fully_refunded=obj.get("refunded") is True,
            amount_refunded=obj.get("amount_refunded"),
            amount=obj.get("amount"),
        )

    return UnhandledEvent(event_id=event_id, event_type=event_type)
