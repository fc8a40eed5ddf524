"""Settlement — apply verified payment events to orders and holds.

Each event kind has one command whose handler re-reads the order inside its
unit of work and enforces the guard for that transition. Only after that
commit does the matching hold operation run:

    payment succeeded → order paid      → consume hold
    payment failed    → order canceled  → release hold
    dispute opened    → order disputed  (stock stays consumed)
    charge refunded   → order refunded  → restock consumed hold (best-effort)

Guard refusals and repeats are reported as ``SettlementOutcome`` values.
Payment integrity mismatches raise ``PaymentIntegrityError`` and leave the
order untouched.
"""

from enum import Enum

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, Integer, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.errors import PaymentIntegrityError
from commerce.hold.transitions import consume, release, restock_from_consumed
from commerce.locking import lock_key
from commerce.order.order import Order, OrderStatus
from commerce.settlement.events import (
    ChargeRefunded,
    DisputeOpened,
    PaymentFailed,
    PaymentSucceeded,
    UnhandledEvent,
)
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


class SettlementOutcome(Enum):
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REFUSED = "refused"
    NOT_FOUND = "not_found"


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------
@commerce.command(part_of="Order")
class MarkOrderPaid:
    order_id = Identifier(required=True)
    payment_reference = String(required=True, max_length=255)
    amount_cents = Integer()
    currency = String(max_length=3)


@commerce.command(part_of="Order")
class MarkOrderCanceled:
    order_id = Identifier(required=True)
    reason = String(max_length=500)


@commerce.command(part_of="Order")
class MarkOrderDisputed:
    order_id = Identifier(required=True)
    reason = String(max_length=500)


@commerce.command(part_of="Order")
class MarkOrderRefunded:
    order_id = Identifier(required=True)
    reason = String(max_length=500)


@commerce.command_handler(part_of=Order)
class SettlementHandler:
    @handle(MarkOrderPaid)
    def mark_order_paid(self, command):
        repo = current_domain.repository_for(Order)
        try:
            order = repo.get(command.order_id)
        except ObjectNotFoundError:
            logger.error("Order not found for successful payment", order_id=str(command.order_id))
            return SettlementOutcome.NOT_FOUND

        if order.status == OrderStatus.PAID.value:
            logger.info("Order already marked as paid", order_id=str(order.id))
            return SettlementOutcome.ALREADY_APPLIED

        if order.status != OrderStatus.PENDING.value:
            logger.error(
                "Order not in pending status, refusing to mark paid",
                order_id=str(order.id),
                current_status=order.status,
                payment_reference=command.payment_reference,
            )
            return SettlementOutcome.REFUSED

        order.mark_paid(
            payment_reference=command.payment_reference,
            amount_cents=command.amount_cents,
            currency=command.currency,
        )
        repo.add(order)
        return SettlementOutcome.APPLIED

    @handle(MarkOrderCanceled)
    def mark_order_canceled(self, command):
        repo = current_domain.repository_for(Order)
        try:
            order = repo.get(command.order_id)
        except ObjectNotFoundError:
            logger.error("Order not found for failed payment", order_id=str(command.order_id))
            return SettlementOutcome.NOT_FOUND

        if order.status != OrderStatus.PENDING.value:
            logger.info(
                "Order not in pending status, skipping cancel",
                order_id=str(order.id),
                current_status=order.status,
            )
            return SettlementOutcome.REFUSED

        order.cancel(command.reason)
        repo.add(order)
        return SettlementOutcome.APPLIED

    @handle(MarkOrderDisputed)
    def mark_order_disputed(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        if order.status == OrderStatus.DISPUTED.value:
            logger.info("Order already marked as disputed", order_id=str(order.id))
            return SettlementOutcome.ALREADY_APPLIED

        if order.status not in (OrderStatus.PAID.value, OrderStatus.FULFILLED.value):
            logger.error(
                "Dispute received for order in unexpected status",
                order_id=str(order.id),
                current_status=order.status,
            )
            return SettlementOutcome.REFUSED

        order.mark_disputed(command.reason)
        repo.add(order)
        return SettlementOutcome.APPLIED

    @handle(MarkOrderRefunded)
    def mark_order_refunded(self, command):
        repo = current_domain.repository_for(Order)
        order = repo.get(command.order_id)

        if order.status == OrderStatus.REFUNDED.value:
            logger.info("Order already marked as refunded", order_id=str(order.id))
            return SettlementOutcome.ALREADY_APPLIED

        if order.status not in (
            OrderStatus.PAID.value,
            OrderStatus.FULFILLED.value,
            OrderStatus.DISPUTED.value,
        ):
            logger.error(
                "Refund received for order in unexpected status",
                order_id=str(order.id),
                current_status=order.status,
            )
            return SettlementOutcome.REFUSED

        order.mark_refunded(command.reason)
        repo.add(order)
        return SettlementOutcome.APPLIED


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------
def find_order_id_by_payment_reference(payment_reference) -> str | None:
    repo = current_domain.repository_for(Order)
    matches = repo._dao.query.filter(payment_reference=payment_reference).limit(1).all().items
    return str(matches[0].id) if matches else None


# ---------------------------------------------------------------------------
# Event handlers
# ---------------------------------------------------------------------------
def handle_payment_succeeded(event: PaymentSucceeded) -> bool:
    if not event.order_id:
        logger.error("Payment intent missing order_id metadata", payment_reference=event.payment_reference)
        return False

    try:
        outcome = run_transaction(
            MarkOrderPaid(
                order_id=event.order_id,
                payment_reference=event.payment_reference,
                amount_cents=event.amount_received,
                currency=event.currency,
            ),
            locks=[lock_key(Order, event.order_id)],
        )
    except PaymentIntegrityError as exc:
        logger.error(
            "Payment does not match order, left pending for manual review",
            order_id=event.order_id,
            field=exc.field,
            expected=exc.expected,
            received=exc.received,
            payment_reference=event.payment_reference,
        )
        raise

    if outcome is not SettlementOutcome.APPLIED:
        return False

    if not consume(event.order_id):
        # The sale is recorded but its units may already be back on the shards
        logger.error(
            "Order paid but its hold could not be consumed, manual review required",
            order_id=event.order_id,
            payment_reference=event.payment_reference,
        )

    logger.info(
        "Payment succeeded, order updated",
        order_id=event.order_id,
        payment_reference=event.payment_reference,
        amount_received=event.amount_received,
        currency=event.currency,
    )
    return True


def handle_payment_failed(event: PaymentFailed) -> bool:
    if not event.order_id:
        logger.error("Payment intent missing order_id metadata", payment_reference=event.payment_reference)
        return False

    outcome = run_transaction(
        MarkOrderCanceled(order_id=event.order_id, reason=event.failure_message),
        locks=[lock_key(Order, event.order_id)],
    )
    if outcome is not SettlementOutcome.APPLIED:
        return False

    release(event.order_id, seed=event.order_id)
    logger.info(
        "Payment failed, order canceled and stock released",
        order_id=event.order_id,
        payment_reference=event.payment_reference,
        failure_message=event.failure_message,
    )
    return True


def _resolve_order(event, kind) -> str | None:
    if not event.payment_reference:
        logger.error("Event missing payment_intent", kind=kind, event_id=event.event_id)
        return None

    order_id = find_order_id_by_payment_reference(event.payment_reference)
    if order_id is None:
        logger.error("Order not found for payment reference", kind=kind, payment_reference=event.payment_reference)
    return order_id


def handle_dispute_opened(event: DisputeOpened) -> bool:
    order_id = _resolve_order(event, "Dispute")
    if order_id is None:
        return False

    outcome = run_transaction(
        MarkOrderDisputed(order_id=order_id, reason=event.reason),
        locks=[lock_key(Order, order_id)],
    )
    if outcome is not SettlementOutcome.APPLIED:
        return False

    logger.error(
        "Dispute created, order marked as disputed, manual review required",
        order_id=order_id,
        dispute_id=event.dispute_id,
        payment_reference=event.payment_reference,
        reason=event.reason,
        amount=event.amount,
        currency=event.currency,
    )
    return True


def handle_charge_refunded(event: ChargeRefunded) -> bool:
    order_id = _resolve_order(event, "Refund")
    if order_id is None:
        return False

    if not event.fully_refunded:
        logger.warning(
            "Partial refund received, requires manual review",
            order_id=order_id,
            charge_id=event.charge_id,
            amount_refunded=event.amount_refunded,
            total_amount=event.amount,
        )
        return False

    outcome = run_transaction(
        MarkOrderRefunded(order_id=order_id, reason="charge refunded"),
        locks=[lock_key(Order, order_id)],
    )
    if outcome is not SettlementOutcome.APPLIED:
        return False

    # The refund is committed and the event will be acknowledged either way
    try:
        restock_from_consumed(order_id)
    except Exception:
        logger.exception("Failed to restock after refund (manual restock required)", order_id=order_id)

    logger.info("Charge refunded, order updated", order_id=order_id, charge_id=event.charge_id)
    return True


def handle_unhandled(event: UnhandledEvent) -> bool:
    logger.info("Unhandled event type", event_id=event.event_id, event_type=event.event_type)
    return False


_HANDLERS = {
    PaymentSucceeded: handle_payment_succeeded,
    PaymentFailed: handle_payment_failed,
    DisputeOpened: handle_dispute_opened,
    ChargeRefunded: handle_charge_refunded,
    UnhandledEvent: handle_unhandled,
}


def dispatch_gateway_event(event) -> bool:
    """Route a parsed gateway event to its handler. Returns True when state changed."""
    return _HANDLERS[type(event)](event)
