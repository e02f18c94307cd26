"""
tillpoint/alerts/deriver.py
---------------------------
Stock and expiry alerts, derived from scratch on every read.

    low_stock  active product with stock ≤ its low_stock_threshold
               danger when stock == 0, else warning
    expiring   batch with remaining stock expiring within
               EXPIRY_ALERT_DAYS; danger within EXPIRY_DANGER_DAYS
    expired    batch with remaining stock whose expiry date has passed
               (or is today); always danger

Nothing is persisted and nothing can be dismissed. AlertFeed caches the
last projection and drops it whenever a commit touches products or
batches, or the calendar day changes.
"""
import logging
import threading
from dataclasses import dataclass, asdict
from datetime import date
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

WARNING = 'warning'
DANGER  = 'danger'


@dataclass(frozen=True)
class Alert:
    id:          str
    type:        str   # low_stock | expiring | expired
    title:       str
    description: str
    severity:    str   # warning | danger

    def to_dict(self) -> dict:
        return asdict(self)


def low_stock_alerts(products: Iterable) -> List[Alert]:
    alerts = []
    for p in products:
        if not p.is_active or p.stock > p.low_stock_threshold:
            continue
        alerts.append(Alert(
            id=f'low-{p.id}',
            type='low_stock',
            title=f'Low Stock: {p.name}',
            description=f'Only {p.stock} units remaining (threshold: {p.low_stock_threshold})',
            severity=DANGER if p.stock == 0 else WARNING,
        ))
    return alerts


def expiry_alerts(batches: Iterable, product_names: Dict[int, str], today: Optional[date] = None,
                  alert_days: int = 30, danger_days: int = 7) -> List[Alert]:
    today = today or date.today()
    alerts = []
    for b in batches:
        if b.expiry_date is None or b.remaining_quantity <= 0:
            continue
        days_left = b.days_to_expiry(today)
        if days_left > alert_days:
            continue

        name = product_names.get(b.product_id, 'Unknown')
        if days_left <= 0:
            alerts.append(Alert(
                id=f'exp-{b.id}',
                type='expired',
                title=f'Expired: {name}',
                description=f'Batch {b.batch_number} has expired ({b.remaining_quantity} units)',
                severity=DANGER,
            ))
        else:
            plural = '' if days_left == 1 else 's'
            alerts.append(Alert(
                id=f'exp-{b.id}',
                type='expiring',
                title=f'Expiring Soon: {name}',
                description=f'Batch {b.batch_number} expires in {days_left} day{plural} '
                            f'({b.remaining_quantity} units)',
                severity=DANGER if days_left <= danger_days else WARNING,
            ))
    return alerts


def derive_alerts(products, batches, today: Optional[date] = None,
                  alert_days: int = 30, danger_days: int = 7) -> List[Alert]:
    """Low-stock alerts first, then expiry alerts, in input order."""
    products = list(products)
    names = {p.id: p.name for p in products}
    return (low_stock_alerts(products)
            + expiry_alerts(batches, names, today, alert_days, danger_days))


class AlertFeed:
    """
    Cached alert projection, invalidated by ledger commits on the
    products and batches tables.
    """
    WATCHED_TABLES = ('products', 'batches')

    def __init__(self):
        self._lock = threading.Lock()
        self._alerts: Optional[List[Alert]] = None
        self._computed_for: Optional[date] = None
        self._unsubscribe = None

    def init_app(self, app):
        from tillpoint.events import ledger_events
        if self._unsubscribe is None:
            self._unsubscribe = ledger_events.subscribe(self.WATCHED_TABLES, self._invalidate)
        self._invalidate()
        app.extensions['alert_feed'] = self

    def _invalidate(self, changed_tables=frozenset()) -> None:
        with self._lock:
            self._alerts = None
        logger.debug(f"Alert feed invalidated by {sorted(changed_tables)}")

    @property
    def stale(self) -> bool:
        return self._alerts is None

    def current(self, today: Optional[date] = None) -> List[Alert]:
        from flask import current_app
        from tillpoint.inventory.models import Product, Batch

        today = today or date.today()
        with self._lock:
            if self._alerts is not None and self._computed_for == today:
                return list(self._alerts)

        cfg = current_app.config
        alerts = derive_alerts(
            Product.query.order_by(Product.name.asc()).all(),
            Batch.query.order_by(Batch.expiry_date.asc(), Batch.id.asc()).all(),
            today,
            alert_days=cfg['EXPIRY_ALERT_DAYS'],
            danger_days=cfg['EXPIRY_DANGER_DAYS'],
        )
        with self._lock:
            self._alerts = alerts
            self._computed_for = today
        return list(alerts)


alert_feed = AlertFeed()
