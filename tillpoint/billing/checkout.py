"""
tillpoint/billing/checkout.py
-----------------------------
Checkout workflow over an explicit Cart.

    empty → building → completed   (checkout, kind=sale)
                     → draft       (save_draft; load_draft consumes it)
                     → quote       (save_quote; convert_quote reloads it)

    completed order → refunded / cancelled
                      (a NEW order mirroring the source with sign −1;
                       the source order is never modified)

Checkout works purely against the local ledger: it never blocks on the
network and does not deplete stock (stock only moves through batches).
"""
import enum
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from flask import current_app

from tillpoint import db
from tillpoint.errors import ValidationError
from tillpoint.utils.persistence import unit_of_work, get_or_raise
from tillpoint.billing.cart import Cart, CartLine
from tillpoint.billing.scanner import BarcodeScanner
from tillpoint.billing.models import (
    Order, OrderItem, OrderPayment, OrderStatus, PaymentMethod,
    Quote, QuoteItem, QuoteStatus,
)
from tillpoint.billing.pricing import (
    DiscountType, OrderDiscount, PriceBreakdown, invert_discount, validate_order_discount, format_money,
)
from tillpoint.customers.models import Customer
from tillpoint.inventory.ledger import find_by_barcode
from tillpoint.inventory.models import Product, TaxRule

logger = logging.getLogger(__name__)


class CheckoutKind(enum.Enum):
    sale   = "sale"
    refund = "refund"
    cancel = "cancel"


KIND_STATUS = {
    CheckoutKind.sale:   OrderStatus.completed,
    CheckoutKind.refund: OrderStatus.refunded,
    CheckoutKind.cancel: OrderStatus.cancelled,
}

KIND_MULTIPLIER = {
    CheckoutKind.sale:   1,
    CheckoutKind.refund: -1,
    CheckoutKind.cancel: -1,
}


@dataclass(frozen=True)
class PaymentSplit:
    """One payment leg: a closed set of methods, each with an amount."""
    method: PaymentMethod
    amount: Decimal

    @classmethod
    def from_dict(cls, data: dict) -> 'PaymentSplit':
        if not isinstance(data, Mapping):
            raise ValidationError({'payments': 'Each payment must be an object with a method and an amount.'})
        try:
            method = PaymentMethod(str(data.get('method', '')).strip().lower())
        except ValueError:
            raise ValidationError({'payments': f'Unknown payment method "{data.get("method")}".'})
        try:
            amount = Decimal(str(data.get('amount', '')).strip())
            if not amount.is_finite():
                raise InvalidOperation
        except InvalidOperation:
            raise ValidationError({'payments': 'Payment amount must be a valid number.'})
        return cls(method, amount)


class CheckoutService:
    """
    All cart/checkout operations for one till session. The cart is
    injected; the caller persists it (e.g. back into the Flask session)
    after each call.
    """

    def __init__(self, cart: Cart, split_tolerance=Decimal('0.005'), quote_valid_days: int = 30,
                 scanner: Optional[BarcodeScanner] = None):
        self.cart = cart
        self.scanner = scanner or BarcodeScanner()
        self.split_tolerance = Decimal(str(split_tolerance))
        self.quote_valid_days = quote_valid_days

    @classmethod
    def for_app(cls, cart: Cart, scanner: Optional[BarcodeScanner] = None) -> 'CheckoutService':
        cfg = current_app.config
        if scanner is None:
            scanner = BarcodeScanner(max_gap_ms=cfg['SCAN_KEY_GAP_MS'])
        return cls(cart, cfg['SPLIT_PAYMENT_TOLERANCE'], cfg['QUOTE_VALID_DAYS'], scanner)

    # ── Building the cart ─────────────────────────────────────────

    def add_product(self, product_id: int) -> CartLine:
        product = get_or_raise(Product, product_id)
        return self.cart.add_line(product)

    def scan_barcode(self, barcode: str) -> Optional[CartLine]:
        """
        Add the product carrying `barcode`. An unknown code is not an
        error: it is logged and None is returned.
        """
        product = find_by_barcode(barcode)
        if product is None:
            logger.warning(f"Scan lookup failed: no active product for barcode {barcode!r}")
            return None
        return self.cart.add_line(product)

    def feed_key(self, key: str, at_ms=None) -> Tuple[Optional[str], Optional[CartLine]]:
        """
        Pass one keystroke to the scanner. When it completes a burst the
        code is looked up as if scanned; returns (code, line), either of
        which may be None.
        """
        code = self.scanner.feed(key, at_ms)
        if code is None:
            return None, None
        return code, self.scan_barcode(code)

    def set_order_discount(self, amount, discount_type) -> None:
        errors = validate_order_discount(amount, discount_type)
        if errors:
            raise ValidationError(errors)
        kind = discount_type if isinstance(discount_type, DiscountType) else DiscountType(discount_type)
        self.cart.set_order_discount(amount, kind)

    def set_line_discount(self, product_id: int, amount) -> None:
        errors = validate_order_discount(amount, DiscountType.flat)
        if errors:
            raise ValidationError({'line_discount': errors.get('discount', 'Invalid discount.')})
        self.cart.set_line_discount(product_id, amount)

    def set_tax_rule(self, rule_id: Optional[int]) -> None:
        """Select a tax rule by id; None means no tax."""
        if rule_id is None:
            self.cart.set_tax_rule(None, Decimal('0'))
            return
        rule = get_or_raise(TaxRule, rule_id)
        if not rule.is_active:
            raise ValidationError({'tax_rule': f'Tax rule "{rule.name}" is not active.'})
        self.cart.set_tax_rule(rule.name, rule.rate_decimal)

    # ── Shared writers ────────────────────────────────────────────

    def _require_lines(self) -> None:
        if self.cart.is_empty():
            raise ValidationError({'cart': 'Cart is empty. Add products first.'})

    def _check_customer(self, customer_id) -> Optional[int]:
        if customer_id in (None, ''):
            return None
        try:
            customer_id = int(customer_id)
        except (TypeError, ValueError):
            raise ValidationError({'customer_id': 'Customer id must be an integer.'})
        if db.session.get(Customer, customer_id) is None:
            raise ValidationError({'customer_id': 'Customer not found.'})
        return customer_id

    def _discount_type(self) -> Optional[DiscountType]:
        discount = self.cart.order_discount
        return discount.type if discount.amount > 0 else None

    def _build_order(self, breakdown: PriceBreakdown, status: OrderStatus, multiplier: int,
                     customer_id=None, notes=None) -> Order:
        order = Order(
            subtotal=breakdown.subtotal,
            tax=breakdown.tax,
            tax_rule_name=self.cart.tax_rule_name,
            tax_rate=self.cart.tax_rate,
            discount=breakdown.discount,
            discount_type=self._discount_type(),
            total=breakdown.total,
            status=status,
            customer_id=customer_id,
            notes=notes or None,
            synced=False,
        )
        for position, line in enumerate(self.cart.lines):
            order.items.append(OrderItem(
                position=position,
                product_id=line.product_id,
                name=line.name,
                price=line.price,
                quantity=line.quantity * multiplier,
                discount=line.discount,
            ))
        return order

    def _resolve_payments(self, total: Decimal, payments=None, method=None) -> List[PaymentSplit]:
        """
        Either one method (records the whole total) or explicit splits,
        which must sum to the total within the split tolerance.
        """
        if payments:
            if not isinstance(payments, (list, tuple)):
                raise ValidationError({'payments': 'Payments must be a list of splits.'})
            splits = [p if isinstance(p, PaymentSplit) else PaymentSplit.from_dict(p) for p in payments]
            paid = sum((s.amount for s in splits), start=Decimal('0'))
            if abs(paid - total) >= self.split_tolerance:
                raise ValidationError({
                    'payments': f'Payments total {format_money(paid)} but the order total '
                                f'is {format_money(total)}.'
                })
            return splits

        if method in (None, ''):
            raise ValidationError({'payments': 'Choose a payment method.'})
        if not isinstance(method, PaymentMethod):
            try:
                method = PaymentMethod(str(method).strip().lower())
            except ValueError:
                raise ValidationError({'payments': f'Unknown payment method "{method}".'})
        return [PaymentSplit(method, total)]

    # ── Checkout ──────────────────────────────────────────────────

    def checkout(self, payments=None, method=None, kind: CheckoutKind = CheckoutKind.sale,
                 customer_id=None, notes=None) -> Order:
        """
        Persist the cart as an order (completed, refunded or cancelled
        per `kind`), then clear the cart and its discount.
        """
        self._require_lines()
        kind = kind if isinstance(kind, CheckoutKind) else CheckoutKind(kind)
        multiplier = KIND_MULTIPLIER[kind]
        breakdown = self.cart.breakdown(multiplier)
        splits = self._resolve_payments(breakdown.total, payments, method)
        customer_id = self._check_customer(customer_id)

        with unit_of_work():
            order = self._build_order(breakdown, KIND_STATUS[kind], multiplier, customer_id, notes)
            for split in splits:
                order.payments.append(OrderPayment(method=split.method, amount=split.amount))
            db.session.add(order)

        self.cart.clear()
        logger.info(
            f"Order {order.id} {order.status.value}: total {format_money(order.total)} via "
            f"{', '.join(s.method.value for s in splits)}"
        )
        return order

    def reverse_order(self, order_id: int, kind: CheckoutKind = CheckoutKind.refund,
                      notes=None) -> Order:
        """
        Record a refund or cancellation of a completed order as a new
        order whose items, figures and payments are the source's with
        the sign flipped. Each order can be reversed once.
        """
        kind = kind if isinstance(kind, CheckoutKind) else CheckoutKind(kind)
        if kind is CheckoutKind.sale:
            raise ValidationError({'kind': 'Only refunds and cancellations reverse an order.'})

        source = get_or_raise(Order, order_id)
        if source.status is not OrderStatus.completed:
            raise ValidationError({'order': f'Only completed orders can be reversed (this one is {source.status.value}).'})
        if Order.query.filter_by(source_order_id=source.id).first():
            raise ValidationError({'order': f'Order {source.id} has already been reversed.'})

        m = Decimal(KIND_MULTIPLIER[kind])
        with unit_of_work():
            reversal = Order(
                subtotal=Decimal(str(source.subtotal)) * m,
                tax=Decimal(str(source.tax)) * m,
                tax_rule_name=source.tax_rule_name,
                tax_rate=source.tax_rate,
                discount=Decimal(str(source.discount)) * m,
                discount_type=source.discount_type,
                total=Decimal(str(source.total)) * m,
                status=KIND_STATUS[kind],
                customer_id=source.customer_id,
                source_order_id=source.id,
                notes=notes or f'{kind.value.title()} of order {source.id}',
                synced=False,
            )
            for item in source.items:
                reversal.items.append(OrderItem(
                    position=item.position, product_id=item.product_id, name=item.name,
                    price=item.price, quantity=item.quantity * int(m), discount=item.discount,
                ))
            for payment in source.payments:
                reversal.payments.append(OrderPayment(
                    method=payment.method, amount=Decimal(str(payment.amount)) * m,
                ))
            db.session.add(reversal)

        logger.info(f"Order {source.id} {KIND_STATUS[kind].value} as order {reversal.id} "
                    f"(total {format_money(reversal.total)})")
        return reversal

    # ── Drafts ────────────────────────────────────────────────────

    def save_draft(self, customer_id=None, notes=None) -> Order:
        """Park the cart as a draft order (no payments), then clear it."""
        self._require_lines()
        customer_id = self._check_customer(customer_id)
        breakdown = self.cart.breakdown()
        with unit_of_work():
            draft = self._build_order(breakdown, OrderStatus.draft, 1, customer_id, notes)
            db.session.add(draft)
        self.cart.clear()
        logger.info(f"Draft {draft.id} saved ({len(draft.items)} lines)")
        return draft

    @staticmethod
    def list_drafts() -> List[Order]:
        return (Order.query.filter_by(status=OrderStatus.draft)
                .order_by(Order.created_at.desc()).all())

    def load_draft(self, order_id: int) -> Cart:
        """
        Replace the cart with a draft's lines (re-read from the current
        product records; lines whose product was deleted are dropped,
        possibly all of them) and delete the draft.
        """
        draft = get_or_raise(Order, order_id)
        if draft.status is not OrderStatus.draft:
            raise ValidationError({'order': f'Order {order_id} is not a draft.'})

        lines = self._rehydrate(draft.items)
        if not lines:
            logger.warning(f"Draft {order_id}: every product has been deleted, cart left empty")
        pricing = self._saved_pricing(draft)

        with unit_of_work():
            db.session.delete(draft)

        self._restore_pricing(lines, pricing)
        logger.info(f"Draft {order_id} loaded into cart ({len(lines)} lines)")
        return self.cart

    # ── Quotes ────────────────────────────────────────────────────

    def save_quote(self, customer_name=None, notes=None, valid_days: Optional[int] = None) -> Quote:
        self._require_lines()
        if valid_days in (None, ''):
            valid_days = self.quote_valid_days
        else:
            try:
                valid_days = int(valid_days)
            except (TypeError, ValueError):
                raise ValidationError({'valid_days': 'Validity must be a whole number of days.'})
        if valid_days < 0:
            raise ValidationError({'valid_days': 'Validity cannot be negative.'})

        breakdown = self.cart.breakdown()
        with unit_of_work():
            quote = Quote(
                customer_name=(customer_name or '').strip() or None,
                subtotal=breakdown.subtotal,
                tax=breakdown.tax,
                tax_rule_name=self.cart.tax_rule_name,
                tax_rate=self.cart.tax_rate,
                discount=breakdown.discount,
                discount_type=self._discount_type(),
                total=breakdown.total,
                status=QuoteStatus.active,
                notes=notes or None,
                valid_until=datetime.utcnow() + timedelta(days=valid_days),
            )
            for position, line in enumerate(self.cart.lines):
                quote.items.append(QuoteItem(
                    position=position, product_id=line.product_id, name=line.name,
                    price=line.price, quantity=line.quantity, discount=line.discount,
                ))
            db.session.add(quote)

        self.cart.clear()
        logger.info(f"Quote {quote.id} saved for {quote.customer_name or 'walk-in'} "
                    f"(total {format_money(quote.total)})")
        return quote

    @staticmethod
    def list_quotes() -> List[Quote]:
        return Quote.query.order_by(Quote.created_at.desc()).all()

    def convert_quote(self, quote_id: int) -> Cart:
        """
        Load an active quote into the cart and mark it converted.
        The quote record is kept.
        """
        quote = get_or_raise(Quote, quote_id)
        status = quote.effective_status()
        if status is QuoteStatus.converted:
            raise ValidationError({'quote': f'Quote {quote_id} has already been converted.'})
        if status is QuoteStatus.expired:
            raise ValidationError({'quote': f'Quote {quote_id} has expired.'})

        lines = self._rehydrate(quote.items)
        if not lines:
            logger.warning(f"Quote {quote_id}: every product has been deleted, cart left empty")

        with unit_of_work():
            quote.status = QuoteStatus.converted

        self._restore_pricing(lines, self._saved_pricing(quote))
        logger.info(f"Quote {quote_id} converted into cart ({len(lines)} lines)")
        return self.cart

    @staticmethod
    def delete_quote(quote_id: int) -> None:
        quote = get_or_raise(Quote, quote_id)
        with unit_of_work():
            db.session.delete(quote)

    @staticmethod
    def expire_quotes(now: Optional[datetime] = None) -> int:
        """Persist active → expired for every quote past valid_until."""
        now = now or datetime.utcnow()
        stale = Quote.query.filter(
            Quote.status == QuoteStatus.active,
            Quote.valid_until.isnot(None),
            Quote.valid_until < now,
        ).all()
        if not stale:
            return 0
        with unit_of_work():
            for quote in stale:
                quote.status = QuoteStatus.expired
        logger.info(f"Expired {len(stale)} quote(s)")
        return len(stale)

    # ── Re-hydration ──────────────────────────────────────────────

    @staticmethod
    def _rehydrate(items) -> List[CartLine]:
        lines = []
        for item in items:
            product = db.session.get(Product, item.product_id)
            if product is None:
                continue   # deleted since the record was saved
            lines.append(CartLine.from_product(product, abs(item.quantity), item.discount))
        return lines

    @staticmethod
    def _saved_pricing(record) -> tuple:
        """(tax_rule_name, tax_rate, OrderDiscount as the cashier entered it)."""
        discount = OrderDiscount.none()
        amount = Decimal(str(record.discount))
        if record.discount_type is not None and amount > 0:
            if record.tax_rate is not None:
                amount = invert_discount(amount, record.discount_type, record.subtotal, record.tax_rate)
            discount = OrderDiscount(amount, record.discount_type)
        return record.tax_rule_name, record.tax_rate, discount

    def _restore_pricing(self, lines: List[CartLine], pricing: tuple) -> None:
        """Put lines, tax rule and order discount back in the cart."""
        tax_rule_name, tax_rate, discount = pricing
        self.cart.clear()
        self.cart.lines = lines
        if tax_rate is not None:
            self.cart.set_tax_rule(tax_rule_name, tax_rate)
        if lines:
            self.cart.order_discount = discount
