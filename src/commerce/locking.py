"""Exclusive access to aggregates for read-then-write units of work.

A Protean unit of work reads an aggregate, mutates it and writes it back.
Nothing in between stops a second writer from reading the same state, so two
concurrent claims of one hold, two admissions of one event id or two
decrements of one shard would all commit. Every command that must act on the
latest state runs while holding the locks of the aggregates it touches:

- within a process, one of ``LOCK_STRIPES`` re-entrant thread locks chosen by
  hashing the key;
- on the memory provider, which copies the whole store at the start of a unit
  of work and swaps it back on commit, one lock serializing every unit of
  work regardless of keys;
- on a postgresql provider, also a session-level advisory lock per key, so
  workers in other processes are excluded as well.

Keys are acquired in sorted order, so a command touching several aggregates
(a batch of shard increments) cannot deadlock against another.
"""

import hashlib
import threading
from contextlib import ExitStack, contextmanager

from protean.utils.globals import current_domain
from sqlalchemy import create_engine, text

LOCK_STRIPES = 1024
ADVISORY_LOCK_PROVIDERS = ("postgresql",)
WHOLE_STORE_PROVIDERS = ("memory",)

_stripes = [threading.RLock() for _ in range(LOCK_STRIPES)]
_store_lock = threading.RLock()
_engines = {}
_engines_guard = threading.Lock()


def lock_key(aggregate_cls, identifier) -> str:
    """Name the lock guarding one aggregate instance."""
    return f"{aggregate_cls.__name__}:{identifier}"


def _digest(key: str) -> int:
    # Signed 64-bit, the argument type of pg_advisory_lock
    return int.from_bytes(hashlib.sha256(key.encode()).digest()[:8], "big", signed=True)


def _provider_kind() -> str:
    return current_domain.providers["default"].conn_info["provider"]


def _advisory_engine():
    if _provider_kind() not in ADVISORY_LOCK_PROVIDERS:
        return None

    uri = current_domain.providers["default"].conn_info["database_uri"]
    with _engines_guard:
        if uri not in _engines:
            _engines[uri] = create_engine(uri)
        return _engines[uri]


@contextmanager
def _advisory_locks(engine, keys):
    ids = sorted({_digest(key) for key in keys})
    with engine.connect() as connection:
        for lock_id in ids:
            connection.execute(text("SELECT pg_advisory_lock(:id)"), {"id": lock_id})
        try:
            yield
        finally:
            for lock_id in reversed(ids):
                connection.execute(text("SELECT pg_advisory_unlock(:id)"), {"id": lock_id})


@contextmanager
def exclusive(keys):
    """Hold the locks for ``keys`` (see ``lock_key``) for the duration of the block."""
    keys = sorted(set(keys))
    with ExitStack() as stack:
        if _provider_kind() in WHOLE_STORE_PROVIDERS:
            stack.enter_context(_store_lock)

        for index in sorted({_digest(key) % LOCK_STRIPES for key in keys}):
            stack.enter_context(_stripes[index])

        engine = _advisory_engine() if keys else None
        if engine is not None:
            stack.enter_context(_advisory_locks(engine, keys))
        yield
