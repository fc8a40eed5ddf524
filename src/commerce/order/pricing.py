"""Order price calculation in integer minor currency units."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from commerce import config


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    tax_cents: int
    shipping_cents: int
    total_cents: int


def calculate_tax(subtotal_cents: int) -> int:
    tax = Decimal(subtotal_cents) * Decimal(str(config.TAX_RATE))
    return int(tax.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_shipping(subtotal_cents: int) -> int:
    if subtotal_cents >= config.FREE_SHIPPING_THRESHOLD_CENTS:
        return 0
    return config.FLAT_SHIPPING_CENTS


def calculate_totals(lines) -> Totals:
    """Price ``(unit_price_cents, quantity)`` lines."""
    subtotal = sum(unit_price * quantity for unit_price, quantity in lines)
    tax = calculate_tax(subtotal)
    shipping = calculate_shipping(subtotal)
    return Totals(
        subtotal_cents=subtotal,
        tax_cents=tax,
        shipping_cents=shipping,
        total_cents=subtotal + tax + shipping,
    )
