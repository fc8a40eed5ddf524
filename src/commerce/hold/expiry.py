"""Hold expiry sweep — reclaims stock from holds nobody settled.

Designed to be triggered periodically by an external scheduler (cron, K8s
CronJob, Cloud Scheduler) through ``manage.py sweep-holds`` or the
maintenance API endpoint. Each run pages through ``held`` holds whose
``expires_at`` has passed and expires them one by one, each in its own
transaction.

The run carries its own wall-clock budget, kept well under the host's
execution ceiling. When the budget is spent the run stops where it is; the
next scheduled run picks up the remainder.
"""

import time
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog
from protean.utils.globals import current_domain

from commerce import config
from commerce.hold.hold import Hold, HoldStatus
from commerce.hold.transitions import expire

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    processed: int = 0
    expired: int = 0
    skipped: int = 0
    failed: int = 0
    elapsed_seconds: float = 0.0
    timed_out: bool = False

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "expired": self.expired,
            "skipped": self.skipped,
            "failed": self.failed,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "timed_out": self.timed_out,
        }


def _expired_page(as_of, page_size, exclude):
    """Oldest expired holds still held, skipping the ids in ``exclude``.

    Holds that failed earlier in the run stay ``held`` and keep sorting first,
    so the query over-fetches by their number and drops them here.
    """
    repo = current_domain.repository_for(Hold)
    holds = (
        repo._dao.query.filter(status=HoldStatus.HELD.value, expires_at__lte=as_of)
        .order_by("expires_at")
        .limit(page_size + len(exclude))
        .all()
        .items
    )
    return [hold for hold in holds if str(hold.id) not in exclude][:page_size]


def sweep_expired_holds(as_of=None, time_budget_seconds=None, page_size=None, clock=time.monotonic) -> SweepResult:
    as_of = as_of or datetime.now(UTC)
    budget = config.SWEEP_TIME_BUDGET_SECONDS if time_budget_seconds is None else time_budget_seconds
    page_size = page_size or config.SWEEP_PAGE_SIZE

    started = clock()
    result = SweepResult()
    failed_ids: set[str] = set()

    logger.info("Sweeping expired holds", as_of=as_of.isoformat(), budget_seconds=budget)

    while not result.timed_out:
        page = _expired_page(as_of, page_size, failed_ids)
        if not page:
            break

        for hold in page:
            hold_id = str(hold.id)
            if clock() - started >= budget:
                result.timed_out = True
                logger.warning(
                    "Hold sweep time budget exhausted, remaining holds left for next run",
                    processed=result.processed,
                    budget_seconds=budget,
                )
                break

            result.processed += 1
            try:
                if expire(hold_id):
                    result.expired += 1
                else:
                    result.skipped += 1
            except Exception:
                result.failed += 1
                failed_ids.add(hold_id)
                logger.exception("Failed to expire hold", hold_id=hold_id)

    result.elapsed_seconds = clock() - started
    logger.info("Hold sweep complete", **result.to_dict())
    return result
