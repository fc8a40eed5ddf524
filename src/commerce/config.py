"""Runtime tunables for the commerce context.

Every value can be overridden through an environment variable of the same
name. Values are read once at import time.
"""

import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


# Holds
HOLD_TTL_MINUTES = _env_int("HOLD_TTL_MINUTES", 10)

# Stock shards
MAX_SHARD_ATTEMPTS = _env_int("MAX_SHARD_ATTEMPTS", 8)
MAX_BATCH_WRITES = _env_int("MAX_BATCH_WRITES", 499)  # store limit is 500 writes per atomic batch
DEFAULT_RESTOCK_SHARD_COUNT = _env_int("DEFAULT_RESTOCK_SHARD_COUNT", 20)

# Expiry sweep
SWEEP_PAGE_SIZE = _env_int("SWEEP_PAGE_SIZE", 100)
SWEEP_TIME_BUDGET_SECONDS = _env_float("SWEEP_TIME_BUDGET_SECONDS", 50.0)

# Dedupe ledger
PROCESSED_EVENT_TTL_DAYS = _env_int("PROCESSED_EVENT_TTL_DAYS", 30)

# Pricing (integer minor currency units)
TAX_RATE = os.environ.get("TAX_RATE", "0.0875")
FREE_SHIPPING_THRESHOLD_CENTS = _env_int("FREE_SHIPPING_THRESHOLD_CENTS", 10000)
FLAT_SHIPPING_CENTS = _env_int("FLAT_SHIPPING_CENTS", 999)

# Optimistic concurrency retries
TRANSACTION_MAX_ATTEMPTS = _env_int("TRANSACTION_MAX_ATTEMPTS", 5)
TRANSACTION_BACKOFF_SECONDS = _env_float("TRANSACTION_BACKOFF_SECONDS", 0.05)

# Payment gateway
PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "fake")
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET")
FAKE_WEBHOOK_SECRET = os.environ.get("FAKE_WEBHOOK_SECRET", "whsec_test")
