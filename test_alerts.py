import pytest
from datetime import date, timedelta

from tillpoint import create_app, db
from tillpoint.alerts.deriver import (
    alert_feed, derive_alerts, expiry_alerts, low_stock_alerts, DANGER, WARNING,
)
from tillpoint.inventory import ledger
from tillpoint.inventory.models import Product, Batch

TODAY = date(2026, 3, 10)


def product(id, stock, threshold=10, active=True, name=None):
    return Product(id=id, name=name or f'P{id}', stock=stock,
                   low_stock_threshold=threshold, is_active=active)


def batch(id, days, remaining=5, product_id=1, number=None):
    expiry = None if days is None else TODAY + timedelta(days=days)
    return Batch(id=id, product_id=product_id, batch_number=number or f'B{id}',
                 quantity=remaining or 1, remaining_quantity=remaining, expiry_date=expiry)


# ── Low stock ─────────────────────────────────────────────────────

def test_low_stock_severity():
    alerts = low_stock_alerts([product(1, 3), product(2, 0), product(3, 10), product(4, 11)])
    assert [(a.id, a.severity) for a in alerts] == [
        ('low-1', WARNING), ('low-2', DANGER), ('low-3', WARNING),
    ]
    assert alerts[0].title == 'Low Stock: P1'
    assert alerts[0].description == 'Only 3 units remaining (threshold: 10)'


def test_inactive_products_never_alert():
    assert low_stock_alerts([product(1, 0, active=False)]) == []


# ── Expiry ────────────────────────────────────────────────────────

def test_expiry_windows():
    alerts = expiry_alerts(
        [batch(1, 20), batch(2, 5), batch(3, 31), batch(4, 30), batch(5, 7), batch(6, 8)],
        {1: 'Milk'}, TODAY,
    )
    assert [(a.id, a.type, a.severity) for a in alerts] == [
        ('exp-1', 'expiring', WARNING),
        ('exp-2', 'expiring', DANGER),
        ('exp-4', 'expiring', WARNING),
        ('exp-5', 'expiring', DANGER),
        ('exp-6', 'expiring', WARNING),
    ]
    assert alerts[1].title == 'Expiring Soon: Milk'
    assert alerts[1].description == 'Batch B2 expires in 5 days (5 units)'


def test_expired_batches():
    alerts = expiry_alerts([batch(1, -2), batch(2, 0)], {1: 'Milk'}, TODAY)
    assert [(a.type, a.severity) for a in alerts] == [('expired', DANGER), ('expired', DANGER)]
    assert alerts[0].title == 'Expired: Milk'
    assert alerts[0].description == 'Batch B1 has expired (5 units)'


def test_singular_day():
    [alert] = expiry_alerts([batch(1, 1)], {1: 'Milk'}, TODAY)
    assert 'expires in 1 day (' in alert.description


def test_empty_or_undated_batches_skipped():
    assert expiry_alerts([batch(1, 3, remaining=0), batch(2, None)], {}, TODAY) == []


def test_unknown_product_name():
    [alert] = expiry_alerts([batch(1, 3, product_id=99)], {}, TODAY)
    assert alert.title == 'Expiring Soon: Unknown'


def test_custom_windows():
    alerts = expiry_alerts([batch(1, 40), batch(2, 12)], {}, TODAY, alert_days=60, danger_days=14)
    assert [a.severity for a in alerts] == [WARNING, DANGER]


def test_derive_orders_low_stock_before_expiry():
    alerts = derive_alerts([product(1, 0, name='Milk')], [batch(7, 2)], TODAY)
    assert [a.id for a in alerts] == ['low-1', 'exp-7']
    assert alerts[1].title == 'Expiring Soon: Milk'


# ── Live feed ─────────────────────────────────────────────────────

@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def test_feed_recomputes_after_product_or_batch_change(app):
    milk = ledger.create_product({'name': 'Milk', 'price': '3', 'stock': 2,
                                  'category': {'new_category_name': 'Dairy'}})
    assert [a.id for a in alert_feed.current()] == [f'low-{milk.id}']
    assert not alert_feed.stale

    ledger.create_batch({
        'product_id': milk.id, 'batch_number': 'M-1', 'quantity': 20, 'cost_price': '1.50',
        'expiry_date': (date.today() + timedelta(days=3)).isoformat(),
    })
    assert alert_feed.stale

    alerts = alert_feed.current()
    assert [(a.type, a.severity) for a in alerts] == [('expiring', DANGER)]


def test_feed_ignores_unrelated_tables(app):
    alert_feed.current()
    ledger.create_tax_rule({'name': 'VAT', 'rate': '15'})
    assert not alert_feed.stale
