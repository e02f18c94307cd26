import enum
from datetime import datetime
from decimal import Decimal
from tillpoint import db
from tillpoint.billing.pricing import DiscountType

# Stored money keeps full precision; only presentation rounds.
Money = db.Numeric(18, 6)


class OrderStatus(enum.Enum):
    completed = "completed"
    pending   = "pending"
    cancelled = "cancelled"
    refunded  = "refunded"
    draft     = "draft"


class QuoteStatus(enum.Enum):
    active    = "active"
    converted = "converted"
    expired   = "expired"


class PaymentMethod(enum.Enum):
    cash   = "cash"
    momo   = "momo"
    card   = "card"
    credit = "credit"


class Order(db.Model):
    """
    One entry in the till's append-only transaction ledger.

    Written once at checkout (completed / refunded / cancelled) or
    draft-save, and afterwards only ever has `synced` flipped. Refunds
    and cancellations are NEW orders whose figures mirror the source
    order with the opposite sign.
    """
    __tablename__ = 'orders'

    id              = db.Column(db.Integer, primary_key=True)   # also the sync clientId
    subtotal        = db.Column(Money, nullable=False)
    tax             = db.Column(Money, nullable=False)
    tax_rule_name   = db.Column(db.String(100), nullable=True)
    tax_rate        = db.Column(db.Numeric(6, 4), nullable=True)
    discount        = db.Column(Money, nullable=False, default=0)   # resolved absolute amount
    discount_type   = db.Column(db.Enum(DiscountType), nullable=True)
    total           = db.Column(Money, nullable=False)
    status          = db.Column(db.Enum(OrderStatus), nullable=False,
                                default=OrderStatus.completed, index=True)
    customer_id     = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True, index=True)
    source_order_id = db.Column(db.Integer, db.ForeignKey('orders.id'), nullable=True)
    notes           = db.Column(db.Text, nullable=True)
    synced          = db.Column(db.Boolean, nullable=False, default=False, index=True)
    created_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    # ── Relationships ─────────────────────────────────────────────
    items    = db.relationship('OrderItem', backref='order', lazy='select',
                               cascade='all, delete-orphan', order_by='OrderItem.position')
    payments = db.relationship('OrderPayment', backref='order', lazy='select',
                               cascade='all, delete-orphan', order_by='OrderPayment.id')
    customer = db.relationship('Customer', lazy='select')

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def paid_total(self) -> Decimal:
        return sum((Decimal(str(p.amount)) for p in self.payments), start=Decimal('0'))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'items': [item.to_dict() for item in self.items],
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'tax_rule_name': self.tax_rule_name,
            'tax_rate': str(self.tax_rate) if self.tax_rate is not None else None,
            'discount': str(self.discount),
            'discount_type': self.discount_type.value if self.discount_type else None,
            'total': str(self.total),
            'status': self.status.value,
            'payment_methods': [p.to_dict() for p in self.payments],
            'customer_id': self.customer_id,
            'source_order_id': self.source_order_id,
            'notes': self.notes,
            'synced': self.synced,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order {self.id} {self.status.value} total={self.total}>"


class OrderItem(db.Model):
    """
    Snapshot of one cart line at the moment the order was written.
    product_id is deliberately not a foreign key: products may be
    deleted while orders referencing them live on.
    """
    __tablename__ = 'order_items'

    id         = db.Column(db.Integer, primary_key=True)
    order_id   = db.Column(db.Integer, db.ForeignKey('orders.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    position   = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    name       = db.Column(db.String(200), nullable=False)
    price      = db.Column(db.Numeric(12, 2), nullable=False)   # unit price snapshot
    quantity   = db.Column(db.Integer, nullable=False)          # negative on refunds
    discount   = db.Column(Money, nullable=False, default=0)    # flat, per unit

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'price': str(self.price),
            'quantity': self.quantity,
            'discount': str(self.discount),
        }

    def __repr__(self):
        return f"<OrderItem order={self.order_id} product={self.product_id} qty={self.quantity}>"


class OrderPayment(db.Model):
    """One leg of a (possibly split) payment."""
    __tablename__ = 'order_payments'

    id       = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey('orders.id', ondelete='CASCADE'),
                         nullable=False, index=True)
    method   = db.Column(db.Enum(PaymentMethod), nullable=False)
    amount   = db.Column(Money, nullable=False)

    def to_dict(self) -> dict:
        return {'method': self.method.value, 'amount': str(self.amount)}

    def __repr__(self):
        return f"<OrderPayment {self.method.value} {self.amount}>"


class Quote(db.Model):
    """
    A durable, customer-facing price estimate. Same pricing snapshot as
    an Order, but carries a customer name and a validity window instead
    of payments. Converting a quote loads it into the cart and marks it
    converted; the quote itself is kept.
    """
    __tablename__ = 'quotes'

    id            = db.Column(db.Integer, primary_key=True)
    customer_name = db.Column(db.String(120), nullable=True)
    subtotal      = db.Column(Money, nullable=False)
    tax           = db.Column(Money, nullable=False)
    tax_rule_name = db.Column(db.String(100), nullable=True)
    tax_rate      = db.Column(db.Numeric(6, 4), nullable=True)
    discount      = db.Column(Money, nullable=False, default=0)
    discount_type = db.Column(db.Enum(DiscountType), nullable=True)
    total         = db.Column(Money, nullable=False)
    status        = db.Column(db.Enum(QuoteStatus), nullable=False,
                              default=QuoteStatus.active, index=True)
    notes         = db.Column(db.Text, nullable=True)
    valid_until   = db.Column(db.DateTime, nullable=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    items = db.relationship('QuoteItem', backref='quote', lazy='select',
                            cascade='all, delete-orphan', order_by='QuoteItem.position')

    def effective_status(self, now: datetime = None) -> QuoteStatus:
        """An active quote past its valid_until reads as expired."""
        now = now or datetime.utcnow()
        if self.status is QuoteStatus.active and self.valid_until is not None and self.valid_until < now:
            return QuoteStatus.expired
        return self.status

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'customer_name': self.customer_name,
            'items': [item.to_dict() for item in self.items],
            'subtotal': str(self.subtotal),
            'tax': str(self.tax),
            'tax_rule_name': self.tax_rule_name,
            'tax_rate': str(self.tax_rate) if self.tax_rate is not None else None,
            'discount': str(self.discount),
            'discount_type': self.discount_type.value if self.discount_type else None,
            'total': str(self.total),
            'status': self.effective_status().value,
            'notes': self.notes,
            'valid_until': self.valid_until.isoformat() if self.valid_until else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Quote {self.id} {self.status.value} total={self.total}>"


class QuoteItem(db.Model):
    __tablename__ = 'quote_items'

    id         = db.Column(db.Integer, primary_key=True)
    quote_id   = db.Column(db.Integer, db.ForeignKey('quotes.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    position   = db.Column(db.Integer, nullable=False, default=0)
    product_id = db.Column(db.Integer, nullable=False, index=True)
    name       = db.Column(db.String(200), nullable=False)
    price      = db.Column(db.Numeric(12, 2), nullable=False)
    quantity   = db.Column(db.Integer, nullable=False)
    discount   = db.Column(Money, nullable=False, default=0)

    def to_dict(self) -> dict:
        return {
            'product_id': self.product_id,
            'name': self.name,
            'price': str(self.price),
            'quantity': self.quantity,
            'discount': str(self.discount),
        }
