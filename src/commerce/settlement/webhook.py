"""Webhook intake — verify, parse, admit once, then settle.

Once an event is admitted to the ledger it is always acknowledged, even if
settlement fails: the gateway would otherwise redeliver it forever, and the
ledger would skip every redelivery anyway. Settlement failures are logged at
error severity for an operator to follow up.
"""

import structlog

from commerce.errors import WebhookSignatureError
from commerce.gateway import get_gateway
from commerce.settlement.events import decode_payload, parse_gateway_event
from commerce.settlement.handlers import dispatch_gateway_event
from commerce.settlement.ledger import admit_once

logger = structlog.get_logger(__name__)


def receive_webhook(body: bytes, signature: str | None) -> dict:
    if not signature:
        raise WebhookSignatureError("Missing signature header")
    if not get_gateway().verify_webhook_signature(body, signature):
        raise WebhookSignatureError("Webhook signature verification failed")

    payload = decode_payload(body)
    event = parse_gateway_event(payload)
    event_type = payload["type"]

    if not admit_once(event.event_id, event_type):
        return {"received": True, "status": "duplicate"}

    try:
        dispatch_gateway_event(event)
    except Exception:
        logger.exception("Webhook settlement failed", event_id=event.event_id, event_type=event_type)

    return {"received": True, "status": "processed"}
