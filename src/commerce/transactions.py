"""Bounded retry around transactional steps.

Every read-then-write in the commerce context is a Protean command whose
handler runs inside its own unit of work. Concurrent writers to the same
aggregate make the losing commit fail with ``ExpectedVersionError``; the
command is then re-processed from scratch so the handler re-reads current
state instead of trusting anything it saw before.
"""

import time
from functools import wraps

import structlog
from protean.exceptions import ExpectedVersionError
from protean.utils.globals import current_domain

from commerce import config
from commerce.locking import exclusive

logger = structlog.get_logger(__name__)


def retry_on_conflict(max_attempts=None, backoff=None):
    """Retry the wrapped callable on optimistic-concurrency conflicts.

    Only safe for callables that re-read state on every attempt.
    """

    def deco(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            attempts = max_attempts or config.TRANSACTION_MAX_ATTEMPTS
            delay = config.TRANSACTION_BACKOFF_SECONDS if backoff is None else backoff
            attempt = 0
            while True:
                attempt += 1
                try:
                    return fn(*args, **kwargs)
                except ExpectedVersionError as exc:
                    if attempt >= attempts:
                        logger.warning(
                            "Transaction conflict retries exhausted",
                            operation=fn.__name__,
                            attempts=attempt,
                            error=str(exc),
                        )
                        raise
                    logger.info(
                        "Transaction conflict, retrying",
                        operation=fn.__name__,
                        attempt=attempt,
                    )
                    time.sleep(delay * attempt)

        return wrapper

    return deco


@retry_on_conflict()
def run_transaction(command, locks=()):
    """Process a command synchronously, retrying on write conflicts.

    ``locks`` names the aggregates the handler reads and writes back (see
    ``commerce.locking.lock_key``); they are held for the whole unit of work.
    """
    with exclusive(locks):
        return current_domain.process(command, asynchronous=False)
