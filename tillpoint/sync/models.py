"""
Remote sync store. These tables live on the 'remote' bind and are only
written by the /api/sync endpoints; client_id is the till's local id.
"""
from datetime import datetime
from tillpoint import db


class SyncedProduct(db.Model):
    __bind_key__ = 'remote'
    __tablename__ = 'synced_products'

    id                  = db.Column(db.Integer, primary_key=True)
    client_id           = db.Column(db.Integer, nullable=False, unique=True, index=True)
    name                = db.Column(db.String(200), nullable=False)
    price               = db.Column(db.Numeric(12, 2), nullable=False)
    category            = db.Column(db.String(100), nullable=False, default='')
    stock               = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    barcode             = db.Column(db.String(100), nullable=True)
    sku                 = db.Column(db.String(100), nullable=True)
    image               = db.Column(db.Text, nullable=True)
    description         = db.Column(db.Text, nullable=True)
    is_active           = db.Column(db.Boolean, nullable=False, default=True)
    created_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at          = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SyncedProduct client={self.client_id} {self.name!r}>"


class SyncedOrder(db.Model):
    """Insert-only: an order that already exists here is never rewritten."""
    __bind_key__ = 'remote'
    __tablename__ = 'synced_orders'

    id              = db.Column(db.Integer, primary_key=True)
    client_id       = db.Column(db.Integer, nullable=False, unique=True, index=True)
    items           = db.Column(db.JSON, nullable=False, default=list)
    subtotal        = db.Column(db.Numeric(18, 6), nullable=False)
    tax             = db.Column(db.Numeric(18, 6), nullable=False)
    tax_rule_name   = db.Column(db.String(100), nullable=True)
    tax_rate        = db.Column(db.Numeric(6, 4), nullable=True)
    discount        = db.Column(db.Numeric(18, 6), nullable=False, default=0)
    discount_type   = db.Column(db.String(20), nullable=True)
    total           = db.Column(db.Numeric(18, 6), nullable=False)
    status          = db.Column(db.String(20), nullable=False)
    payment_methods = db.Column(db.JSON, nullable=False, default=list)
    customer_id     = db.Column(db.Integer, nullable=True)
    notes           = db.Column(db.Text, nullable=True)
    created_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    received_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SyncedOrder client={self.client_id} {self.status} total={self.total}>"


class SyncedCustomer(db.Model):
    __bind_key__ = 'remote'
    __tablename__ = 'synced_customers'

    id        = db.Column(db.Integer, primary_key=True)
    client_id = db.Column(db.Integer, nullable=False, unique=True, index=True)
    name      = db.Column(db.String(100), nullable=False)
    phone     = db.Column(db.String(20), nullable=False)
    balance   = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    def __repr__(self):
        return f"<SyncedCustomer client={self.client_id} {self.name!r}>"
