"""Commerce bounded context — Inventory Holds, Orders and Payment Settlement.

Reserves finite stock across sharded counters, binds reservations to orders
through time-boxed holds, and settles orders from an at-least-once payment
event feed (CQRS, not event sourced).
"""

from protean.domain import Domain

commerce = Domain(name="commerce")
