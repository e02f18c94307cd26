import threading
from urllib.parse import urlsplit

import pytest
import requests

from tillpoint import create_app, db
from tillpoint.billing.cart import new_cart
from tillpoint.billing.checkout import CheckoutService
from tillpoint.billing.models import Order, OrderStatus
from tillpoint.customers.models import Customer
from tillpoint.inventory import ledger
from tillpoint.inventory.models import Product
from tillpoint.sync.client import SyncClient, SyncReport, SyncUnreachable, order_payload
from tillpoint.sync.models import SyncedProduct, SyncedOrder, SyncedCustomer
from tillpoint.sync.scheduler import SyncScheduler


class _Response:
    def __init__(self, resp):
        self.status_code = resp.status_code
        self.text = resp.get_data(as_text=True)
        self._json = resp.get_json(silent=True)

    def json(self):
        if self._json is None:
            raise ValueError('no JSON body')
        return self._json


class FlaskHTTP:
    """requests-style get/post routed into the Flask test client."""

    def __init__(self, client, unreachable=(), status=None):
        self.client = client
        self.unreachable = set(unreachable)
        self.status = dict(status or {})
        self.calls = []

    def _dispatch(self, method, url, timeout, json=None):
        path = urlsplit(url).path
        self.calls.append((method, path, timeout))
        if path in self.unreachable:
            raise requests.ConnectionError(f'Connection refused: {url}')
        if path in self.status:
            resp = self.client.open(path, method=method, json=json)
            resp.status_code = self.status[path]
            return _Response(resp)
        if method == 'GET':
            return _Response(self.client.get(path))
        return _Response(self.client.post(path, json=json))

    def get(self, url, timeout=None):
        return self._dispatch('GET', url, timeout)

    def post(self, url, json=None, timeout=None):
        return self._dispatch('POST', url, timeout, json=json)


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ledger_data(app):
    """Two products, a customer, a completed sale and a draft."""
    food = {'new_category_name': 'Food'}
    rice = ledger.create_product({'name': 'Rice', 'price': '10', 'stock': 5, 'category': food})
    ledger.create_product({'name': 'Beans', 'price': '6', 'stock': 5, 'category': food})
    db.session.add(Customer(name='Ama', phone='0240000000'))
    db.session.commit()

    till = CheckoutService.for_app(new_cart())
    till.add_product(rice.id)
    sale = till.checkout(method='cash')
    till.add_product(rice.id)
    draft = till.save_draft()
    return {'sale_id': sale.id, 'draft_id': draft.id, 'rice_id': rice.id}


def sync_client(app, client, **kwargs):
    return SyncClient.from_config(app.config, http=FlaskHTTP(client, **kwargs))


# ── Server ────────────────────────────────────────────────────────

ORDER = {
    'clientId': 7, 'items': [{'productId': 1, 'name': 'Rice', 'price': '10', 'quantity': 1}],
    'subtotal': '10', 'tax': '1.5', 'discount': '0', 'total': '11.5', 'status': 'completed',
    'paymentMethods': [{'method': 'cash', 'amount': '11.5'}],
    'createdAt': '2026-03-01T10:00:00Z',
}


def test_order_push_is_idempotent(client):
    first = client.post('/api/sync/orders', json=[ORDER]).get_json()
    second = client.post('/api/sync/orders', json=[dict(ORDER, total='999')]).get_json()

    assert first == {'synced': 1, 'results': [{'clientId': 7, 'action': 'created'}]}
    assert second == {'synced': 0, 'results': [{'clientId': 7, 'action': 'exists'}]}
    assert SyncedOrder.query.count() == 1
    assert str(SyncedOrder.query.one().total).startswith('11.5')


def test_duplicate_client_ids_in_one_batch(client):
    body = client.post('/api/sync/orders', json=[ORDER, ORDER]).get_json()
    assert [r['action'] for r in body['results']] == ['created', 'exists']
    assert SyncedOrder.query.count() == 1


def test_product_upsert(client):
    product = {'clientId': 3, 'name': 'Rice', 'price': '10', 'category': 'Food', 'stock': 5,
               'lowStockThreshold': 10, 'isActive': True}
    first = client.post('/api/sync/products', json=[product]).get_json()
    second = client.post('/api/sync/products', json=[dict(product, name='Brown Rice')]).get_json()

    assert first['results'] == [{'clientId': 3, 'action': 'created'}]
    assert second == {'synced': 1, 'results': [{'clientId': 3, 'action': 'updated'}]}
    assert SyncedProduct.query.one().name == 'Brown Rice'


def test_customer_upsert(client):
    customer = {'clientId': 1, 'name': 'Ama', 'phone': '024', 'balance': '0'}
    client.post('/api/sync/customers', json=[customer])
    body = client.post('/api/sync/customers', json=[dict(customer, balance='12.50')]).get_json()
    assert body['results'] == [{'clientId': 1, 'action': 'updated'}]
    assert str(SyncedCustomer.query.one().balance) == '12.50'


@pytest.mark.parametrize('path', ['/api/sync/products', '/api/sync/orders', '/api/sync/customers'])
def test_non_array_body_rejected(client, path):
    resp = client.post(path, json={'clientId': 1})
    assert resp.status_code == 400
    assert resp.get_json()['error'].startswith('Expected array of')


def test_bad_record_rolls_back_whole_batch(client):
    resp = client.post('/api/sync/orders', json=[ORDER, {'clientId': 8}])
    assert resp.status_code == 500
    assert 'error' in resp.get_json()
    assert SyncedOrder.query.count() == 0


def test_status_counts(client):
    client.post('/api/sync/orders', json=[ORDER])
    assert client.get('/api/sync/status').get_json() == {'products': 0, 'orders': 1, 'customers': 0}


# ── Client ────────────────────────────────────────────────────────

def test_sync_all_pushes_and_marks(app, client, ledger_data):
    http = FlaskHTTP(client)
    report = SyncClient.from_config(app.config, http=http).sync_all()

    assert report.ok
    assert report.products['synced'] == 2
    assert report.orders['results'] == [{'clientId': ledger_data['sale_id'], 'action': 'created'}]
    assert report.customers['synced'] == 1

    assert db.session.get(Order, ledger_data['sale_id']).synced is True
    assert db.session.get(Order, ledger_data['draft_id']).synced is False
    assert SyncedOrder.query.count() == 1
    assert all(not p.needs_sync for p in Product.query.all())

    assert [path for _, path, _ in http.calls] == [
        '/api/sync/products', '/api/sync/orders', '/api/sync/customers',
    ]
    assert {timeout for _, _, timeout in http.calls} == {app.config['SYNC_HTTP_TIMEOUT']}


def test_second_pass_only_sends_changes(app, client, ledger_data):
    sync_client(app, client).sync_all()
    ledger.update_product(ledger_data['rice_id'], {'price': '11'})

    http = FlaskHTTP(client)
    report = SyncClient.from_config(app.config, http=http).sync_all()

    assert report.products['results'] == [{'clientId': ledger_data['rice_id'], 'action': 'updated'}]
    assert report.orders == {'synced': 0, 'results': []}
    assert [path for _, path, _ in http.calls] == ['/api/sync/products', '/api/sync/customers']
    assert str(SyncedProduct.query.filter_by(client_id=ledger_data['rice_id']).one().price) == '11.00'


def test_failed_category_does_not_block_others(app, client, ledger_data):
    report = sync_client(app, client, unreachable={'/api/sync/orders'}).sync_all()

    assert len(report.errors) == 1
    assert report.errors[0].startswith('Orders:')
    assert report.unreachable
    assert report.products['synced'] == 2
    assert report.customers['synced'] == 1
    assert db.session.get(Order, ledger_data['sale_id']).synced is False

    retry = sync_client(app, client).sync_all()
    assert retry.ok
    assert db.session.get(Order, ledger_data['sale_id']).synced is True


def test_server_error_leaves_orders_unsynced(app, client, ledger_data):
    report = sync_client(app, client, status={'/api/sync/orders': 503}).sync_all()
    assert any('503' in e for e in report.errors)
    assert not report.unreachable
    assert db.session.get(Order, ledger_data['sale_id']).synced is False


def test_retry_after_lost_response_marks_existing(app, client, ledger_data):
    # The server stored the order but the till never saw the answer
    sale = db.session.get(Order, ledger_data['sale_id'])
    client.post('/api/sync/orders', json=[order_payload(sale)])

    report = sync_client(app, client).sync_all()

    assert report.orders['results'] == [{'clientId': sale.id, 'action': 'exists'}]
    assert db.session.get(Order, sale.id).synced is True
    assert SyncedOrder.query.count() == 1


def test_refunds_sync_with_negative_totals(app, client, ledger_data):
    till = CheckoutService.for_app(new_cart())
    refund = till.reverse_order(ledger_data['sale_id'])
    sync_client(app, client).sync_all()

    remote = SyncedOrder.query.filter_by(client_id=refund.id).one()
    assert remote.status == OrderStatus.refunded.value
    assert remote.total < 0


def test_remote_status(app, client, ledger_data):
    sync_client(app, client).sync_all()
    assert sync_client(app, client).remote_status() == {'products': 2, 'orders': 1, 'customers': 1}


# ── Scheduler ─────────────────────────────────────────────────────

class CountingClient:
    def __init__(self, calls, done=None, gate=None, reachable=True):
        self.calls = calls
        self.done = done
        self.gate = gate
        self.reachable = reachable
        self.status_checks = 0
        self.closed = False

    def sync_all(self):
        self.calls.append(threading.current_thread().name)
        if self.gate is not None:
            self.gate.wait(2)
        if self.done is not None:
            self.done.set()
        if not self.reachable:
            return SyncReport(errors=['Products: connection refused'], unreachable=True)
        return SyncReport()

    def remote_status(self):
        self.status_checks += 1
        if not self.reachable:
            raise SyncUnreachable('GET /status failed: connection refused')
        return {'products': 0, 'orders': 0, 'customers': 0}

    def close(self):
        self.closed = True


def test_run_once_uses_client_factory(app):
    calls = []
    scheduler = SyncScheduler.from_app(app, client_factory=lambda: CountingClient(calls))
    assert isinstance(scheduler.run_once(), SyncReport)
    assert scheduler.passes == 1
    assert len(calls) == 1


def test_client_is_reused_and_closed_on_stop(app):
    calls, made = [], []

    def factory():
        made.append(CountingClient(calls))
        return made[-1]

    scheduler = SyncScheduler(app, client_factory=factory)
    scheduler.run_once()
    scheduler.run_once()
    assert len(calls) == 2
    assert len(made) == 1

    scheduler.stop()
    assert made[0].closed


def test_sync_client_closes_only_its_own_session(app, client):
    closed = []
    own = SyncClient.from_config(app.config)
    own.http.close = lambda: closed.append('own')
    with own:
        pass

    lent = FlaskHTTP(client)
    lent.close = lambda: closed.append('lent')
    SyncClient.from_config(app.config, http=lent).close()

    assert closed == ['own']


def test_overlapping_passes_are_skipped(app):
    calls = []
    gate, started = threading.Event(), threading.Event()

    class Slow(CountingClient):
        def sync_all(self):
            started.set()
            return super().sync_all()

    scheduler = SyncScheduler(app, client_factory=lambda: Slow(calls, gate=gate))
    worker = threading.Thread(target=scheduler.run_once)
    worker.start()
    assert started.wait(2)

    assert scheduler.run_once() is None

    gate.set()
    worker.join(2)
    assert len(calls) == 1


def test_unreachable_pass_goes_offline(app):
    calls = []
    remote = CountingClient(calls, reachable=False)
    scheduler = SyncScheduler(app, client_factory=lambda: remote)

    report = scheduler.run_once()
    assert report.unreachable
    assert scheduler.online is False

    # Offline ticks only ask for the status
    assert scheduler.run_once() is None
    assert scheduler.run_once() is None
    assert remote.status_checks == 2
    assert len(calls) == 1
    assert scheduler.passes == 1


def test_remote_answering_again_brings_scheduler_online(app):
    calls = []
    remote = CountingClient(calls, reachable=False)
    scheduler = SyncScheduler(app, client_factory=lambda: remote)
    scheduler.run_once()
    assert scheduler.online is False

    remote.reachable = True
    report = scheduler.run_once()

    assert report is not None and report.ok
    assert scheduler.online is True
    assert remote.status_checks == 1
    assert len(calls) == 2


def test_http_errors_keep_scheduler_online(app, client, ledger_data):
    http = FlaskHTTP(client, status={'/api/sync/orders': 503})
    scheduler = SyncScheduler(app, client_factory=lambda: SyncClient.from_config(app.config, http=http))

    report = scheduler.run_once()

    assert not report.ok
    assert scheduler.online is True


def test_offline_timer_resumes_when_remote_returns(app):
    calls = []
    done = threading.Event()
    remote = CountingClient(calls, done=done, reachable=False)
    scheduler = SyncScheduler(app, client_factory=lambda: remote, interval=0.02, startup_delay=60)
    scheduler.run_once()
    done.clear()
    assert scheduler.online is False

    scheduler.start()
    try:
        scheduler.set_online(True)
        assert done.wait(2)
        done.clear()
        remote.reachable = True
        assert done.wait(2)
    finally:
        scheduler.stop(timeout=2)
    assert scheduler.online is True
    assert not scheduler.running
    assert remote.closed


def test_offline_skips_and_reconnect_triggers(app):
    calls = []
    done = threading.Event()
    remote = CountingClient(calls, done=done, reachable=False)
    scheduler = SyncScheduler(app, client_factory=lambda: remote,
                              interval=60, startup_delay=60)
    scheduler.set_online(False)
    assert scheduler.run_once() is None
    assert calls == []

    remote.reachable = True
    scheduler.start()
    try:
        scheduler.set_online(True)
        assert done.wait(2)
    finally:
        scheduler.stop(timeout=2)
    assert calls == ['tillpoint-sync']
    assert not scheduler.running


def test_timer_runs_repeatedly_until_stopped(app):
    calls = []
    scheduler = SyncScheduler.from_app(app, client_factory=lambda: CountingClient(calls))
    scheduler.start()
    try:
        deadline = threading.Event()
        for _ in range(40):
            if len(calls) >= 2:
                break
            deadline.wait(0.05)
    finally:
        scheduler.stop(timeout=2)
    assert len(calls) >= 2
    settled = len(calls)
    threading.Event().wait(0.15)
    assert len(calls) == settled
