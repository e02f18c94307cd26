"""
tillpoint/sync/client.py
------------------------
Till side of the sync protocol: push local records to the remote store.

One pass (sync_all) pushes three categories, in order and independently:

    products   never synced, or edited since the last push (synced_at)
    orders     every non-draft order with synced == False
    customers  all of them

A failure in one category is recorded in SyncReport.errors and the next
category still runs. Local rows are only marked after a 2xx response,
and only those the server lists in its results, so a pass that dies
halfway leaves everything it did not confirm for the next pass.

Must run inside an application context (it reads the local ledger).
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

import requests
from sqlalchemy.exc import SQLAlchemyError

from tillpoint import db
from tillpoint.billing.models import Order, OrderStatus
from tillpoint.customers.models import Customer
from tillpoint.inventory.models import Product

logger = logging.getLogger(__name__)

API_PREFIX = '/api/sync'
ORDER_CONFIRMED = ('created', 'exists')


class SyncError(Exception):
    """Network failure or non-2xx answer from the remote sync API."""


class SyncUnreachable(SyncError):
    """The remote could not be reached at all (no answer, not a bad one)."""


@dataclass
class SyncReport:
    products:  Optional[dict] = None
    orders:    Optional[dict] = None
    customers: Optional[dict] = None
    errors:    List[str] = field(default_factory=list)
    unreachable: bool = False

    @property
    def ok(self) -> bool:
        return not self.errors


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _money(value) -> Optional[str]:
    return None if value is None else str(value)


# ── Payload builders ──────────────────────────────────────────────

def product_payload(product: Product) -> dict:
    return {
        'clientId': product.id,
        'name': product.name,
        'price': _money(product.price),
        'category': product.category,
        'stock': product.stock,
        'lowStockThreshold': product.low_stock_threshold,
        'barcode': product.barcode,
        'sku': product.sku,
        'image': product.image,
        'description': product.description,
        'isActive': product.is_active,
        'createdAt': _iso(product.created_at),
        'updatedAt': _iso(product.updated_at),
    }


def order_payload(order: Order) -> dict:
    return {
        'clientId': order.id,
        'items': [
            {
                'productId': item.product_id,
                'name': item.name,
                'price': _money(item.price),
                'quantity': item.quantity,
                'discount': _money(item.discount),
            }
            for item in order.items
        ],
        'subtotal': _money(order.subtotal),
        'tax': _money(order.tax),
        'taxRuleName': order.tax_rule_name,
        'taxRate': _money(order.tax_rate),
        'discount': _money(order.discount),
        'discountType': order.discount_type.value if order.discount_type else None,
        'total': _money(order.total),
        'status': order.status.value,
        'paymentMethods': [
            {'method': p.method.value, 'amount': _money(p.amount)} for p in order.payments
        ],
        'customerId': order.customer_id,
        'notes': order.notes,
        'createdAt': _iso(order.created_at),
    }


def customer_payload(customer: Customer) -> dict:
    return {
        'clientId': customer.id,
        'name': customer.name,
        'phone': customer.phone,
        'balance': _money(customer.balance),
    }


# ── Client ────────────────────────────────────────────────────────

class SyncClient:
    """
    `http` is anything with requests-style get/post (a requests.Session
    by default). `timeout` is per request, in seconds; None waits forever.
    """

    def __init__(self, base_url: str, http=None, timeout: Optional[float] = 30):
        self.base_url = base_url.rstrip('/')
        self._owns_http = http is None
        self.http = http or requests.Session()
        self.timeout = timeout

    @classmethod
    def from_config(cls, config, http=None) -> 'SyncClient':
        return cls(config['SYNC_REMOTE_URL'], http=http, timeout=config.get('SYNC_HTTP_TIMEOUT'))

    def close(self) -> None:
        """Close the HTTP session, unless the caller passed it in."""
        if self._owns_http:
            self.http.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _url(self, path: str) -> str:
        return f'{self.base_url}{API_PREFIX}{path}'

    def _send(self, method: str, path: str, payload=None) -> dict:
        url = self._url(path)
        try:
            if method == 'GET':
                resp = self.http.get(url, timeout=self.timeout)
            else:
                resp = self.http.post(url, json=payload, timeout=self.timeout)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise SyncUnreachable(f'{method} {path} failed: {exc}') from exc
        except requests.RequestException as exc:
            raise SyncError(f'{method} {path} failed: {exc}') from exc

        if not 200 <= resp.status_code < 300:
            raise SyncError(f'{method} {path} answered {resp.status_code}: {resp.text[:200]}')
        try:
            return resp.json()
        except ValueError as exc:
            raise SyncError(f'{method} {path} returned invalid JSON') from exc

    # ── Categories ────────────────────────────────────────────────

    def sync_products(self) -> dict:
        pushed_at = datetime.utcnow()
        pending = [p for p in Product.query.order_by(Product.id).all() if p.needs_sync]
        if not pending:
            return {'synced': 0, 'results': []}

        result = self._send('POST', '/products', [product_payload(p) for p in pending])
        by_id = {p.id: p for p in pending}
        for entry in result.get('results', []):
            product = by_id.get(entry.get('clientId'))
            if product is not None and entry.get('action') in ('created', 'updated'):
                product.synced_at = pushed_at
        db.session.commit()
        return result

    def sync_orders(self) -> dict:
        pending = (Order.query
                   .filter(Order.synced.is_(False), Order.status != OrderStatus.draft)
                   .order_by(Order.id)
                   .all())
        if not pending:
            return {'synced': 0, 'results': []}

        result = self._send('POST', '/orders', [order_payload(o) for o in pending])
        by_id = {o.id: o for o in pending}
        marked = 0
        for entry in result.get('results', []):
            order = by_id.get(entry.get('clientId'))
            if order is not None and entry.get('action') in ORDER_CONFIRMED:
                order.synced = True
                marked += 1
        db.session.commit()
        logger.info(f"Orders pushed: {len(pending)} sent, {marked} confirmed")
        return result

    def sync_customers(self) -> dict:
        customers = Customer.query.order_by(Customer.id).all()
        if not customers:
            return {'synced': 0, 'results': []}
        return self._send('POST', '/customers', [customer_payload(c) for c in customers])

    def sync_all(self) -> SyncReport:
        """One full pass. Never raises; failures land in report.errors."""
        report = SyncReport()
        for name, push in (('products', self.sync_products),
                           ('orders', self.sync_orders),
                           ('customers', self.sync_customers)):
            try:
                setattr(report, name, push())
            except (SyncError, SQLAlchemyError) as exc:
                db.session.rollback()
                report.errors.append(f'{name.title()}: {exc}')
                report.unreachable = report.unreachable or isinstance(exc, SyncUnreachable)
                logger.warning(f"Sync {name} failed: {exc}")
        if report.ok:
            logger.info("Sync pass complete")
        return report

    def remote_status(self) -> dict:
        return self._send('GET', '/status')
