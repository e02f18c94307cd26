"""
tillpoint/billing/cart.py
-------------------------
The in-progress sale: cart lines, order discount and tax rule.

A Cart is an explicit object handed to CheckoutService; nothing here
reads ambient state. The route layer moves it in and out of the Flask
session with load_cart() / store_cart(), under key 'cart':

{
    "lines": [
        {
            "product_id": int,
            "name":       str,
            "price":      str,   ← stored as string to survive JSON serialisation
            "quantity":   int,
            "discount":   str,   ← flat, per unit
            "barcode":    str | None,
            "category":   str
        },
        ...
    ],
    "discount":      {"amount": str, "type": "flat" | "percentage"},
    "tax_rule_name": str | None,
    "tax_rate":      str
}

All money values are kept as strings in the session and converted
to Decimal on load.
"""
from dataclasses import dataclass, field
from decimal import Decimal
from typing import List, Optional

from flask import session

from tillpoint.billing.pricing import (
    DiscountType, OrderDiscount, PriceBreakdown, compute_breakdown, to_decimal,
)

CART_KEY = 'cart'


@dataclass
class CartLine:
    product_id: int
    name:       str
    price:      Decimal
    quantity:   int = 1
    discount:   Decimal = Decimal('0')
    barcode:    Optional[str] = None
    category:   str = ''

    @classmethod
    def from_product(cls, product, quantity: int = 1, discount=Decimal('0')) -> 'CartLine':
        return cls(
            product_id=product.id,
            name=product.name,
            price=to_decimal(product.price),
            quantity=quantity,
            discount=to_decimal(discount),
            barcode=product.barcode,
            category=product.category,
        )

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'name':       self.name,
            'price':      str(self.price),
            'quantity':   self.quantity,
            'discount':   str(self.discount),
            'barcode':    self.barcode,
            'category':   self.category,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'CartLine':
        return cls(
            product_id=int(data['product_id']),
            name=data['name'],
            price=Decimal(data['price']),
            quantity=int(data['quantity']),
            discount=Decimal(data.get('discount', '0')),
            barcode=data.get('barcode'),
            category=data.get('category', ''),
        )


@dataclass
class Cart:
    tax_rate:       Decimal = Decimal('0')
    tax_rule_name:  Optional[str] = None
    lines:          List[CartLine] = field(default_factory=list)
    order_discount: OrderDiscount = field(default_factory=OrderDiscount.none)

    # ── Read ──────────────────────────────────────────────────────

    def is_empty(self) -> bool:
        return not self.lines

    def line_for(self, product_id: int) -> Optional[CartLine]:
        for line in self.lines:
            if line.product_id == product_id:
                return line
        return None

    def breakdown(self, multiplier: int = 1) -> PriceBreakdown:
        return compute_breakdown(self.lines, self.tax_rate, self.order_discount, multiplier)

    # ── Write ─────────────────────────────────────────────────────

    def add_line(self, product) -> CartLine:
        """
        Add one unit of `product`. If already present, increments
        quantity by 1. Stock is not checked or reserved.
        """
        line = self.line_for(product.id)
        if line is not None:
            line.quantity += 1
            return line
        line = CartLine.from_product(product)
        self.lines.append(line)
        return line

    def remove_line(self, product_id: int) -> None:
        self.lines = [line for line in self.lines if line.product_id != product_id]

    def set_quantity(self, product_id: int, quantity: int) -> None:
        """A quantity of zero or less removes the line."""
        if quantity <= 0:
            self.remove_line(product_id)
            return
        line = self.line_for(product_id)
        if line is not None:
            line.quantity = quantity

    def set_line_discount(self, product_id: int, amount) -> None:
        line = self.line_for(product_id)
        if line is not None:
            line.discount = to_decimal(amount)

    def set_order_discount(self, amount, discount_type: DiscountType) -> None:
        """Replaces any previous order discount."""
        self.order_discount = OrderDiscount(to_decimal(amount), discount_type)

    def set_tax_rule(self, name: Optional[str], rate) -> None:
        self.tax_rule_name = name
        self.tax_rate = to_decimal(rate)

    def clear(self) -> None:
        """Empty the cart and reset the discount; the tax rule stays."""
        self.lines = []
        self.order_discount = OrderDiscount.none()

    # ── Serialisation ─────────────────────────────────────────────

    def to_dict(self) -> dict:
        return {
            'lines': [line.to_dict() for line in self.lines],
            'discount': {
                'amount': str(self.order_discount.amount),
                'type':   self.order_discount.type.value,
            },
            'tax_rule_name': self.tax_rule_name,
            'tax_rate':      str(self.tax_rate),
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Cart':
        discount = data.get('discount') or {}
        return cls(
            tax_rate=Decimal(data.get('tax_rate', '0')),
            tax_rule_name=data.get('tax_rule_name'),
            lines=[CartLine.from_dict(line) for line in data.get('lines', [])],
            order_discount=OrderDiscount(
                Decimal(discount.get('amount', '0')),
                DiscountType(discount.get('type', 'flat')),
            ),
        )


# ── Flask session glue ────────────────────────────────────────────

def new_cart() -> Cart:
    """An empty cart priced with the default tax rule (or configured rate)."""
    from flask import current_app
    from tillpoint.inventory.ledger import default_tax_rule

    rule = default_tax_rule()
    if rule is not None:
        return Cart(tax_rate=rule.rate_decimal, tax_rule_name=rule.name)
    return Cart(tax_rate=to_decimal(current_app.config['DEFAULT_TAX_RATE']))


def load_cart() -> Cart:
    """Return the session's cart (a fresh one if none is stored)."""
    data = session.get(CART_KEY)
    if not data:
        return new_cart()
    return Cart.from_dict(data)


def store_cart(cart: Cart) -> None:
    session.permanent = True
    session[CART_KEY] = cart.to_dict()
    session.modified = True
