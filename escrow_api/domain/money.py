# SPDX-License-Identifier: Apache-2.0

"""
Integer minor-unit money arithmetic.

All amounts are kobo (or the smallest unit of the configured currency).
Fractions are rounded half-up, never truncated.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from escrow_api.models.entities import Coupon
from escrow_api.models.enums import CouponType

BASIS_POINTS = 10000


def round_half_up(value: Decimal) -> int:
    """Round a decimal amount to the nearest minor unit, halves up."""
    return int(value.quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def percentage_of(amount: int, percent: int) -> int:
    """Return ``percent`` % of ``amount`` in minor units."""
    return round_half_up(Decimal(amount) * Decimal(percent) / Decimal(100))


def discounted_unit_price(price: int, discount_percent: int) -> int:
    """Apply a product-level percentage discount to a unit price."""
    if not 0 <= discount_percent <= 100:
        raise ValueError(f"Discount percent out of range: {discount_percent}")
    return price - percentage_of(price, discount_percent)


def compute_commission(total_amount: int, rate_bps: int) -> int:
    """Platform commission for an order total at ``rate_bps`` basis points."""
    if total_amount < 0:
        raise ValueError("Total amount cannot be negative")
    if not 0 <= rate_bps <= BASIS_POINTS:
        raise ValueError(f"Commission rate out of range: {rate_bps}")
    return round_half_up(Decimal(total_amount) * Decimal(rate_bps) / Decimal(BASIS_POINTS))


def coupon_discount(coupon: Optional[Coupon], subtotal: int) -> int:
    """Discount granted by a coupon, never more than the subtotal."""
    if coupon is None:
        return 0
    if coupon.type == CouponType.PERCENTAGE:
        return min(percentage_of(subtotal, coupon.discount), subtotal)
    return min(coupon.discount, subtotal)


def allocate(amount: int, weights: List[int]) -> List[int]:
    """
    Split ``amount`` across ``weights`` proportionally.

    Each share is floored and the leftover minor units go to the largest
    remainders, earliest first, so the shares always sum to ``amount``. When
    ``amount`` does not exceed the total weight, no share exceeds its weight.
    """
    total = sum(weights)
    if total <= 0:
        raise ValueError("Weights must sum to more than zero")
    shares = [amount * weight // total for weight in weights]
    by_remainder = sorted(range(len(weights)), key=lambda i: (-(amount * weights[i] % total), i))
    for index in by_remainder[:amount - sum(shares)]:
        shares[index] += 1
    return shares


def format_amount(amount: int, currency: str = "NGN") -> str:
    """Render minor units as a major-unit string, e.g. ``NGN 1,250.50``."""
    sign = "-" if amount < 0 else ""
    major, minor = divmod(abs(amount), 100)
    return f"{sign}{currency} {major:,}.{minor:02d}"
