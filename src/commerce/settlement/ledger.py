"""Event dedupe ledger — each gateway event id is acted on at most once.

A ``ProcessedEvent`` record exists for every event that has triggered (or is
triggering) settlement. Admission is a single unit of work, run under the
event id's exclusive lock, that checks for the record and creates it. When
admission itself fails the event is treated as a duplicate: the gateway
redelivers unacknowledged events, and a missed side effect is recoverable
where a repeated financial one is not.

Records carry an expiry and are purged by ``purge_expired_events``.
"""

from datetime import UTC, datetime, timedelta

import structlog
from protean import handle
from protean.exceptions import ObjectNotFoundError
from protean.fields import DateTime, Identifier, String
from protean.utils.globals import current_domain

from commerce import config
from commerce.domain import commerce
from commerce.locking import lock_key
from commerce.transactions import run_transaction

logger = structlog.get_logger(__name__)


@commerce.aggregate
class ProcessedEvent:
    """Identified by the gateway's event id."""

    event_type = String(max_length=100)
    created_at = DateTime(required=True)
    expires_at = DateTime(required=True)


@commerce.command(part_of="ProcessedEvent")
class AdmitEvent:
    event_id = Identifier(required=True)
    event_type = String(max_length=100)


@commerce.command(part_of="ProcessedEvent")
class PurgeProcessedEvents:
    as_of = DateTime(required=True)


@commerce.command_handler(part_of=ProcessedEvent)
class ProcessedEventHandler:
    @handle(AdmitEvent)
    def admit_event(self, command) -> bool:
        repo = current_domain.repository_for(ProcessedEvent)
        try:
            repo.get(command.event_id)
            return False
        except ObjectNotFoundError:
            pass

        now = datetime.now(UTC)
        repo.add(
            ProcessedEvent(
                id=command.event_id,
                event_type=command.event_type,
                created_at=now,
                expires_at=now + timedelta(days=config.PROCESSED_EVENT_TTL_DAYS),
            )
        )
        return True

    @handle(PurgeProcessedEvents)
    def purge_processed_events(self, command) -> int:
        repo = current_domain.repository_for(ProcessedEvent)
        expired = (
            repo._dao.query.filter(expires_at__lte=command.as_of)
            .order_by("expires_at")
            .limit(config.MAX_BATCH_WRITES)
            .all()
            .items
        )
        for record in expired:
            repo._dao.delete(record)
        return len(expired)


def admit_once(event_id, event_type=None) -> bool:
    """Return True exactly once per event id; False for duplicates and on any failure."""
    try:
        admitted = run_transaction(
            AdmitEvent(event_id=event_id, event_type=event_type),
            locks=[lock_key(ProcessedEvent, event_id)],
        )
    except Exception:
        logger.exception("Event admission failed, treating as duplicate", event_id=event_id)
        return False

    if not admitted:
        logger.info("Event already processed, skipping", event_id=event_id, event_type=event_type)
    return admitted


def purge_expired_events(as_of=None) -> int:
    """Delete ledger records past their expiry, one bounded batch per transaction."""
    as_of = as_of or datetime.now(UTC)
    total = 0
    while True:
        deleted = run_transaction(PurgeProcessedEvents(as_of=as_of))
        total += deleted
        if deleted < config.MAX_BATCH_WRITES:
            break

    logger.info("Purged expired processed events", deleted=total, as_of=as_of.isoformat())
    return total
