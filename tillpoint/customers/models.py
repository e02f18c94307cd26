from datetime import datetime
from tillpoint import db


class Customer(db.Model):
    """A known customer; `balance` is the credit/account balance."""
    __tablename__ = 'customers'

    id         = db.Column(db.Integer, primary_key=True)   # also the sync clientId
    name       = db.Column(db.String(100), nullable=False, index=True)
    phone      = db.Column(db.String(20), unique=True, nullable=False, index=True)
    balance    = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'phone': self.phone,
            'balance': str(self.balance),
        }

    def __repr__(self):
        return f"<Customer {self.name} ({self.phone}) Bal:{self.balance}>"
