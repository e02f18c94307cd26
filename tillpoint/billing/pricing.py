"""
tillpoint/billing/pricing.py
----------------------------
Pure-Python pricing engine.

Given cart lines (price, quantity, per-unit discount), a tax rate
(fraction) and an order-level discount, compute the price breakdown:

    line_total  = (price − per_unit_discount) × quantity
    subtotal    = Σ line_total
    tax         = subtotal × tax_rate
    discount    = flat amount,  or  (subtotal + tax) × percent / 100
    total       = max(0, subtotal + tax − discount)

All arithmetic is Decimal and nothing is quantized: stored values keep
full precision and only format_money() rounds, for display.

Refunds and cancellations are priced as the mirror image of a sale:
the breakdown is computed as for the sale, then every figure is
multiplied by −1 (see PriceBreakdown.mirrored()).

No DB access happens here.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable

ZERO    = Decimal('0')
HUNDRED = Decimal('100')
CENTS   = Decimal('0.01')


class DiscountType(enum.Enum):
    flat       = "flat"
    percentage = "percentage"


def to_decimal(value) -> Decimal:
    """Decimal from int/str/Decimal (floats go through str to avoid binary noise)."""
    if isinstance(value, Decimal):
        return value
    if value is None:
        return ZERO
    return Decimal(str(value))


@dataclass(frozen=True)
class OrderDiscount:
    """Order-level discount as the cashier entered it."""
    amount: Decimal = ZERO
    type:   DiscountType = DiscountType.flat

    @classmethod
    def none(cls) -> 'OrderDiscount':
        return cls(ZERO, DiscountType.flat)

    def resolve(self, subtotal: Decimal, tax: Decimal) -> Decimal:
        """Absolute currency value of this discount for the given figures."""
        if self.type is DiscountType.percentage:
            return (subtotal + tax) * (self.amount / HUNDRED)
        return self.amount


@dataclass(frozen=True)
class PriceBreakdown:
    subtotal: Decimal
    tax:      Decimal
    discount: Decimal
    total:    Decimal

    def mirrored(self, multiplier: int = -1) -> 'PriceBreakdown':
        m = Decimal(multiplier)
        return PriceBreakdown(
            subtotal=self.subtotal * m,
            tax=self.tax * m,
            discount=self.discount * m,
            total=self.total * m,
        )

    def to_dict(self) -> dict:
        return {
            'subtotal': str(self.subtotal),
            'tax':      str(self.tax),
            'discount': str(self.discount),
            'total':    str(self.total),
        }


def line_total(price, quantity, discount=ZERO) -> Decimal:
    return (to_decimal(price) - to_decimal(discount)) * to_decimal(quantity)


def compute_breakdown(lines: Iterable, tax_rate, order_discount: OrderDiscount = None,
                      multiplier: int = 1) -> PriceBreakdown:
    """
    Price a cart.

    `lines` is any iterable of objects with .price, .quantity and
    .discount (per unit). CartLine, OrderItem and QuoteItem all fit.
    `multiplier` is 1 for a sale and −1 for a refund/cancellation.
    """
    order_discount = order_discount or OrderDiscount.none()
    rate = to_decimal(tax_rate)

    subtotal = sum(
        (line_total(line.price, line.quantity, line.discount) for line in lines),
        start=ZERO,
    )
    tax      = subtotal * rate
    discount = order_discount.resolve(subtotal, tax)
    total    = max(ZERO, subtotal + tax - discount)

    breakdown = PriceBreakdown(subtotal=subtotal, tax=tax, discount=discount, total=total)
    if multiplier != 1:
        breakdown = breakdown.mirrored(multiplier)
    return breakdown


def invert_discount(discount_amount, discount_type: DiscountType, subtotal, tax_rate) -> Decimal:
    """
    Recover the cashier-entered discount from a stored absolute amount.
    Flat amounts come back unchanged; a percentage is re-derived from
    (subtotal + subtotal × tax_rate).
    """
    amount = to_decimal(discount_amount)
    if discount_type is not DiscountType.percentage:
        return amount
    subtotal = to_decimal(subtotal)
    base = subtotal + subtotal * to_decimal(tax_rate)
    if base == 0:
        base = Decimal('1')
    return amount / base * HUNDRED


def validate_order_discount(amount, discount_type) -> dict:
    """
    Input-boundary check for an order discount. Percentages above 100
    are rejected (not clamped); negative amounts are rejected.
    """
    errors = {}
    try:
        value = to_decimal(amount)
        if not value.is_finite():
            raise ValueError
    except (ArithmeticError, ValueError):
        return {'discount': 'Discount must be a valid number.'}

    try:
        kind = discount_type if isinstance(discount_type, DiscountType) else DiscountType(discount_type)
    except ValueError:
        return {'discount_type': 'Discount type must be "flat" or "percentage".'}

    if value < 0:
        errors['discount'] = 'Discount cannot be negative.'
    elif kind is DiscountType.percentage and value > HUNDRED:
        errors['discount'] = 'Percentage discount cannot exceed 100.'
    return errors


def format_money(value) -> str:
    """Presentation only: two decimal places, half-up."""
    return str(to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP))
