"""
Pricing calculator

Pure functions: no I/O, no session. Every component is rounded to currency
precision before the total is formed, so
    total == subtotal - discount + tax + shipping
holds exactly for every cart and order.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple

from storefront.core.config import settings
from storefront.core.utils import to_money

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CartTotals:
    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


def shipping_for(subtotal: Decimal, threshold: Optional[Decimal] = None, flat_rate: Optional[Decimal] = None) -> Decimal:
    """Free above the threshold, flat rate otherwise. Nothing to ship, nothing to pay."""
    threshold = settings.FREE_SHIPPING_THRESHOLD if threshold is None else threshold
    flat_rate = settings.SHIPPING_FLAT_RATE if flat_rate is None else flat_rate
    if subtotal <= 0 or subtotal > threshold:
        return ZERO
    return to_money(flat_rate)


def calculate_totals(
    lines: Iterable[Tuple[Decimal, int]],
    discount: Decimal = ZERO,
    tax_rate: Optional[Decimal] = None,
) -> CartTotals:
    """
    Price a set of `(unit_price, quantity)` lines.

    Tax is charged on the pre-discount subtotal.
    """
    if discount < 0:
        raise ValueError("discount must not be negative")
    tax_rate = settings.TAX_RATE if tax_rate is None else tax_rate

    subtotal = to_money(sum((Decimal(price) * qty for price, qty in lines), ZERO))
    discount = to_money(discount)
    tax = to_money(subtotal * tax_rate)
    shipping = shipping_for(subtotal)
    total = subtotal - discount + tax + shipping

    return CartTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        shipping=shipping,
        total=total,
    )
