import pytest
from decimal import Decimal

from tillpoint.billing.cart import CartLine
from tillpoint.billing.pricing import (
    DiscountType, OrderDiscount, compute_breakdown, line_total,
    invert_discount, validate_order_discount, format_money,
)

D = Decimal


@pytest.fixture
def lines():
    return [
        CartLine(product_id=1, name='Rice', price=D('10'), quantity=2),
        CartLine(product_id=2, name='Juice', price=D('5'), quantity=1, discount=D('1')),
    ]


def test_line_total_applies_per_unit_discount():
    assert line_total('10', 3, '2') == D('24')
    assert line_total(D('4.50'), 2) == D('9.00')


def test_breakdown_without_discount(lines):
    b = compute_breakdown(lines, D('0.15'))
    assert b.subtotal == D('24')
    assert b.tax == D('3.60')
    assert b.discount == D('0')
    assert b.total == D('27.60')


def test_percentage_discount_applies_to_subtotal_plus_tax(lines):
    b = compute_breakdown(lines, D('0.15'), OrderDiscount(D('10'), DiscountType.percentage))
    assert b.discount == D('2.760')
    assert b.total == D('24.840')


def test_flat_discount(lines):
    b = compute_breakdown(lines, D('0.15'), OrderDiscount(D('5'), DiscountType.flat))
    assert b.discount == D('5')
    assert b.total == D('22.60')


def test_total_is_floored_at_zero(lines):
    b = compute_breakdown(lines, D('0.15'), OrderDiscount(D('500'), DiscountType.flat))
    assert b.total == D('0')
    assert b.discount == D('500')


def test_stored_values_are_not_rounded():
    one = [CartLine(product_id=1, name='Gum', price=D('0.99'), quantity=3)]
    b = compute_breakdown(one, D('0.125'))
    assert b.tax == D('0.37125')
    assert format_money(b.tax) == '0.37'


def test_refund_mirrors_every_figure(lines):
    sale = compute_breakdown(lines, D('0.15'), OrderDiscount(D('10'), DiscountType.percentage))
    refund = compute_breakdown(lines, D('0.15'), OrderDiscount(D('10'), DiscountType.percentage),
                               multiplier=-1)
    assert refund.subtotal == -sale.subtotal
    assert refund.tax == -sale.tax
    assert refund.discount == -sale.discount
    assert refund.total == -sale.total


def test_floored_total_mirrors_to_zero(lines):
    refund = compute_breakdown(lines, D('0.15'), OrderDiscount(D('500'), DiscountType.flat), multiplier=-1)
    assert refund.total == D('0')


def test_empty_cart_prices_to_zero():
    b = compute_breakdown([], D('0.15'))
    assert (b.subtotal, b.tax, b.discount, b.total) == (0, 0, 0, 0)


def test_invert_percentage_discount():
    # 10% of (24 + 3.60) was stored as 2.76
    assert invert_discount(D('2.76'), DiscountType.percentage, D('24'), D('0.15')) == D('10')


def test_invert_flat_discount_is_identity():
    assert invert_discount(D('5'), DiscountType.flat, D('24'), D('0.15')) == D('5')


def test_invert_with_zero_base_divides_by_one():
    assert invert_discount(D('5'), DiscountType.percentage, D('0'), D('0.15')) == D('500')


@pytest.mark.parametrize('amount, kind, field', [
    ('-1', 'flat', 'discount'),
    ('101', 'percentage', 'discount'),
    ('abc', 'flat', 'discount'),
    ('NaN', 'flat', 'discount'),
    ('5', 'bogus', 'discount_type'),
])
def test_invalid_order_discounts_are_rejected(amount, kind, field):
    assert field in validate_order_discount(amount, kind)


def test_boundary_discounts_are_accepted():
    assert validate_order_discount('100', 'percentage') == {}
    assert validate_order_discount('0', DiscountType.flat) == {}
    assert validate_order_discount('1000', 'flat') == {}


def test_format_money_rounds_half_up():
    assert format_money(D('2.745')) == '2.75'
    assert format_money(D('-0.005')) == '-0.01'
    assert format_money(3) == '3.00'
