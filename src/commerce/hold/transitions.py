"""Hold state transitions — claim first, touch stock second.

``ClaimHold`` re-reads the hold inside its own unit of work, holding the
hold's exclusive lock, and flips its status only if it is still in the
expected state. Once that commit lands, no other caller can claim the hold
from the same state again, so the stock movement that follows (outside
the transaction, batched) runs at most once even when the process crashes
or retries between the two steps. The worst case is stock returned late,
never twice.

A hold that is missing or already moved on is an expected race outcome, not
a failure; it is reported as a typed result and the public operations turn
it into ``False``.
"""

from dataclasses import dataclass

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import Identifier, String
from protean.utils.globals import current_domain

from commerce.domain import commerce
from commerce.hold.hold import Hold, HoldStatus
from commerce.locking import lock_key
from commerce.stock.restock import restock
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Claim results
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Claimed:
    hold_id: str
    items: tuple[tuple[str, int], ...]


@dataclass(frozen=True)
class HoldNotFound:
    hold_id: str


@dataclass(frozen=True)
class WrongHoldState:
    hold_id: str
    actual_status: str


ClaimResult = Claimed | HoldNotFound | WrongHoldState


# ---------------------------------------------------------------------------
# Command and handler
# ---------------------------------------------------------------------------
@commerce.command(part_of="Hold")
class ClaimHold:
    """Atomically move a hold from one status to another."""

    hold_id = Identifier(required=True)
    from_status = String(required=True, max_length=20)
    to_status = String(required=True, max_length=20)


@commerce.command_handler(part_of=Hold)
class ClaimHoldHandler:
    @handle(ClaimHold)
    def claim_hold(self, command) -> ClaimResult:
        repo = current_domain.repository_for(Hold)
        try:
            hold = repo.get(command.hold_id)
        except ObjectNotFoundError:
            return HoldNotFound(str(command.hold_id))

        if hold.status != command.from_status:
            return WrongHoldState(str(command.hold_id), hold.status)

        items = tuple(hold.held_items())
        hold.transition_to(HoldStatus(command.to_status))
        repo.add(hold)
        return Claimed(str(command.hold_id), items)


def claim_and_transition(hold_id, from_status: HoldStatus, to_status: HoldStatus) -> ClaimResult:
    return run_transaction(
        ClaimHold(
            hold_id=hold_id,
            from_status=from_status.value,
            to_status=to_status.value,
        ),
        locks=[lock_key(Hold, hold_id)],
    )


def _report_unclaimed(result, operation):
    if isinstance(result, HoldNotFound):
        logger.info("Hold not found, nothing to do", hold_id=result.hold_id, operation=operation)
    else:
        logger.info(
            "Hold not in expected state, nothing to do",
            hold_id=result.hold_id,
            actual_status=result.actual_status,
            operation=operation,
        )


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------
def release(hold_id, seed=None) -> bool:
    """Release a held reservation and return its stock to the shards."""
    result = claim_and_transition(hold_id, HoldStatus.HELD, HoldStatus.RELEASED)
    if not isinstance(result, Claimed):
        _report_unclaimed(result, "release")
        return False

    units = restock(result.items, seed or hold_id)
    logger.info("Hold released and stock restored", hold_id=hold_id, units=units)
    return True


def consume(hold_id) -> bool:
    """Make a held reservation permanent. Stock does not move."""
    result = claim_and_transition(hold_id, HoldStatus.HELD, HoldStatus.CONSUMED)
    if not isinstance(result, Claimed):
        _report_unclaimed(result, "consume")
        return False

    logger.info("Hold consumed", hold_id=hold_id)
    return True


def restock_from_consumed(hold_id) -> bool:
    """Return the stock of a consumed hold after its sale was reversed."""
    result = claim_and_transition(hold_id, HoldStatus.CONSUMED, HoldStatus.RELEASED)
    if not isinstance(result, Claimed):
        _report_unclaimed(result, "restock_from_consumed")
        return False

    units = restock(result.items, hold_id)
    logger.info("Consumed hold restocked", hold_id=hold_id, units=units)
    return True


def expire(hold_id) -> bool:
    """Expire a hold nobody settled and return its stock."""
    result = claim_and_transition(hold_id, HoldStatus.HELD, HoldStatus.EXPIRED)
    if not isinstance(result, Claimed):
        _report_unclaimed(result, "expire")
        return False

    units = restock(result.items, hold_id)
    logger.info("Hold expired and stock restored", hold_id=hold_id, units=units)
    return True
