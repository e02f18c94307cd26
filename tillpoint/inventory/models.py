from decimal import Decimal
from datetime import datetime, date
from typing import Optional
from tillpoint import db

# ── Central default: new products and migrated rows start here ──
DEFAULT_LOW_STOCK_THRESHOLD = 10


class Category(db.Model):
    """
    A product grouping. Products reference categories by NAME
    (denormalised), so renaming a category must cascade to products.
    """
    __tablename__ = 'categories'

    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(100), unique=True, nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)
    color       = db.Column(db.String(20), nullable=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'color': self.color,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Category {self.name!r}>"


class Product(db.Model):
    """Represents a product on the till."""
    __tablename__ = 'products'

    id                  = db.Column(db.Integer, primary_key=True)
    name                = db.Column(db.String(200), nullable=False, index=True)
    price               = db.Column(db.Numeric(12, 2), nullable=False)
    category            = db.Column(db.String(100), nullable=False, default='', index=True)
    category_id         = db.Column(db.Integer, db.ForeignKey('categories.id', ondelete='SET NULL'),
                                    nullable=True, index=True)
    stock               = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=DEFAULT_LOW_STOCK_THRESHOLD)
    barcode             = db.Column(db.String(100), unique=True, nullable=True, index=True)
    sku                 = db.Column(db.String(100), nullable=True, index=True)
    image               = db.Column(db.Text, nullable=True)
    description         = db.Column(db.Text, nullable=True)
    is_active           = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    # Bumped by touch() on ledger edits only; marking synced leaves it alone
    updated_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    synced_at           = db.Column(db.DateTime, nullable=True, index=True)

    __table_args__ = (
        db.CheckConstraint('stock >= 0', name='check_stock_non_negative'),
        db.CheckConstraint('price >= 0', name='check_price_non_negative'),
    )

    # ── Relationships ─────────────────────────────────────────────
    variants = db.relationship('ProductVariant', backref='product', lazy='select',
                               cascade='all, delete-orphan')
    batches  = db.relationship('Batch', backref='product', lazy='select',
                               cascade='all, delete-orphan',
                               foreign_keys='Batch.product_id')

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def is_low_stock(self) -> bool:
        """True when stock is at or below this product's own threshold."""
        return self.stock <= self.low_stock_threshold

    @property
    def needs_sync(self) -> bool:
        return self.synced_at is None or self.updated_at > self.synced_at

    def touch(self) -> None:
        self.updated_at = datetime.utcnow()

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'price': str(self.price),
            'category': self.category,
            'category_id': self.category_id,
            'stock': self.stock,
            'low_stock_threshold': self.low_stock_threshold,
            'barcode': self.barcode,
            'sku': self.sku,
            'image': self.image,
            'description': self.description,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Product {self.id} {self.name!r} stock={self.stock}>"


class ProductVariant(db.Model):
    """
    A sellable variation of a product (size, colour, …).
    Own price and stock; variant stock never feeds Product.stock.
    """
    __tablename__ = 'variants'

    id         = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'),
                           nullable=False, index=True)
    name       = db.Column(db.String(200), nullable=False, index=True)
    sku        = db.Column(db.String(100), nullable=True, index=True)
    barcode    = db.Column(db.String(100), nullable=True, index=True)
    price      = db.Column(db.Numeric(12, 2), nullable=False)
    stock      = db.Column(db.Integer, nullable=False, default=0)
    attributes = db.Column(db.JSON, nullable=False, default=dict)   # {"size": "L", ...}

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'name': self.name,
            'sku': self.sku,
            'barcode': self.barcode,
            'price': str(self.price),
            'stock': self.stock,
            'attributes': dict(self.attributes or {}),
        }

    def __repr__(self):
        return f"<Variant {self.name!r} P:{self.product_id}>"


class Batch(db.Model):
    """
    A received lot of stock for a product (optionally a variant).
    Creating, editing or deleting a batch moves Product.stock by the
    change in remaining_quantity (see inventory.ledger).
    """
    __tablename__ = 'batches'

    id                 = db.Column(db.Integer, primary_key=True)
    product_id         = db.Column(db.Integer, db.ForeignKey('products.id', ondelete='CASCADE'),
                                   nullable=False, index=True)
    variant_id         = db.Column(db.Integer, db.ForeignKey('variants.id', ondelete='SET NULL'),
                                   nullable=True, index=True)
    batch_number       = db.Column(db.String(60), nullable=False, index=True)
    quantity           = db.Column(db.Integer, nullable=False, default=0)
    remaining_quantity = db.Column(db.Integer, nullable=False, default=0)
    cost_price         = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    expiry_date        = db.Column(db.Date, nullable=True, index=True)   # NULL = non-perishable
    manufacturing_date = db.Column(db.Date, nullable=True)
    supplier           = db.Column(db.String(200), nullable=True)
    notes              = db.Column(db.Text, nullable=True)
    created_at         = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('remaining_quantity >= 0', name='check_batch_remaining_non_negative'),
    )

    # ── Computed helpers ──────────────────────────────────────────
    def days_to_expiry(self, today: Optional[date] = None) -> Optional[int]:
        if self.expiry_date is None:
            return None
        return (self.expiry_date - (today or date.today())).days

    def is_expired(self, today: Optional[date] = None) -> bool:
        days = self.days_to_expiry(today)
        return days is not None and days <= 0

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'product_id': self.product_id,
            'variant_id': self.variant_id,
            'batch_number': self.batch_number,
            'quantity': self.quantity,
            'remaining_quantity': self.remaining_quantity,
            'cost_price': str(self.cost_price),
            'expiry_date': self.expiry_date.isoformat() if self.expiry_date else None,
            'manufacturing_date': self.manufacturing_date.isoformat() if self.manufacturing_date else None,
            'supplier': self.supplier,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Batch {self.batch_number!r} P:{self.product_id} left:{self.remaining_quantity} exp:{self.expiry_date}>"


class TaxRule(db.Model):
    """
    A named tax rate (fraction, 0.15 == 15%).
    At most one rule is the default; the ledger clears all others
    before setting one.
    """
    __tablename__ = 'tax_rules'

    id         = db.Column(db.Integer, primary_key=True)
    name       = db.Column(db.String(100), nullable=False)
    rate       = db.Column(db.Numeric(6, 4), nullable=False)
    is_default = db.Column(db.Boolean, nullable=False, default=False, index=True)
    is_active  = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('rate >= 0 AND rate <= 1', name='check_tax_rate_fraction'),
    )

    @property
    def rate_decimal(self) -> Decimal:
        return Decimal(str(self.rate))

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'rate': str(self.rate),
            'is_default': self.is_default,
            'is_active': self.is_active,
        }

    def __repr__(self):
        return f"<TaxRule {self.name!r} {self.rate}>"
