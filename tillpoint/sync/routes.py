"""
tillpoint/sync/routes.py
------------------------
Remote end of the sync protocol, mounted at /api/sync.

    POST /products   upsert by clientId      → created | updated
    POST /orders     insert if absent         → created | exists
    POST /customers  upsert by clientId      → created | updated
    GET  /status     record counts

Each POST body is a JSON array. A batch is applied in one transaction:
any bad record rolls the whole batch back and the endpoint answers 500,
so the till keeps its records unsynced and retries on the next pass.
"""
from datetime import datetime
from decimal import Decimal

from flask import request, jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from tillpoint import db
from tillpoint.sync import sync
from tillpoint.sync.models import SyncedProduct, SyncedOrder, SyncedCustomer

PAYLOAD_ERRORS = (SQLAlchemyError, LookupError, TypeError, ValueError, ArithmeticError)


def _decimal(value, default=None):
    if value is None or value == '':
        return default
    return Decimal(str(value))


def _timestamp(value):
    if not value:
        return datetime.utcnow()
    return datetime.fromisoformat(str(value).replace('Z', '+00:00')).replace(tzinfo=None)


def _array_body(kind):
    body = request.get_json(silent=True)
    if not isinstance(body, list):
        return None, (jsonify({'error': f'Expected array of {kind}'}), 400)
    return body, None


def _failed(kind, exc):
    db.session.rollback()
    current_app.logger.error(f"Sync {kind} error: {exc}")
    return jsonify({'error': str(exc)}), 500


# ── PRODUCTS ──────────────────────────────────────────────────────

def _apply_product(row: SyncedProduct, data: dict) -> None:
    row.name                = data['name']
    row.price               = _decimal(data['price'])
    row.category            = data.get('category') or ''
    row.stock               = int(data.get('stock') or 0)
    row.low_stock_threshold = int(data.get('lowStockThreshold') or 0)
    row.barcode             = data.get('barcode') or None
    row.sku                 = data.get('sku') or None
    row.image               = data.get('image') or None
    row.description         = data.get('description') or None
    row.is_active           = bool(data.get('isActive', True))
    row.updated_at          = datetime.utcnow()


@sync.route('/products', methods=['POST'])
def sync_products():
    products, error = _array_body('products')
    if error:
        return error

    try:
        results = []
        for data in products:
            client_id = int(data['clientId'])
            row = SyncedProduct.query.filter_by(client_id=client_id).first()
            if row is not None:
                _apply_product(row, data)
                results.append({'clientId': client_id, 'action': 'updated'})
            else:
                row = SyncedProduct(client_id=client_id, created_at=_timestamp(data.get('createdAt')))
                _apply_product(row, data)
                db.session.add(row)
                results.append({'clientId': client_id, 'action': 'created'})
        db.session.commit()
    except PAYLOAD_ERRORS as exc:
        return _failed('products', exc)

    current_app.logger.info(f"Sync products: {len(results)} upserted")
    return jsonify({'synced': len(results), 'results': results})


# ── ORDERS ────────────────────────────────────────────────────────

@sync.route('/orders', methods=['POST'])
def sync_orders():
    """An order already held under the same clientId is left untouched."""
    orders, error = _array_body('orders')
    if error:
        return error

    try:
        results = []
        for data in orders:
            client_id = int(data['clientId'])
            if SyncedOrder.query.filter_by(client_id=client_id).first() is not None:
                results.append({'clientId': client_id, 'action': 'exists'})
                continue
            db.session.add(SyncedOrder(
                client_id=client_id,
                items=data.get('items') or [],
                subtotal=_decimal(data['subtotal']),
                tax=_decimal(data['tax']),
                tax_rule_name=data.get('taxRuleName') or None,
                tax_rate=_decimal(data.get('taxRate')),
                discount=_decimal(data.get('discount'), Decimal('0')),
                discount_type=data.get('discountType') or None,
                total=_decimal(data['total']),
                status=data['status'],
                payment_methods=data.get('paymentMethods') or [],
                customer_id=data.get('customerId') or None,
                notes=data.get('notes') or None,
                created_at=_timestamp(data.get('createdAt')),
            ))
            results.append({'clientId': client_id, 'action': 'created'})
        db.session.commit()
    except PAYLOAD_ERRORS as exc:
        return _failed('orders', exc)

    created = sum(1 for r in results if r['action'] == 'created')
    current_app.logger.info(f"Sync orders: {created} created, {len(results) - created} already held")
    return jsonify({'synced': created, 'results': results})


# ── CUSTOMERS ─────────────────────────────────────────────────────

@sync.route('/customers', methods=['POST'])
def sync_customers():
    customers, error = _array_body('customers')
    if error:
        return error

    try:
        results = []
        for data in customers:
            client_id = int(data['clientId'])
            row = SyncedCustomer.query.filter_by(client_id=client_id).first()
            action = 'updated'
            if row is None:
                row = SyncedCustomer(client_id=client_id)
                db.session.add(row)
                action = 'created'
            row.name    = data['name']
            row.phone   = data['phone']
            row.balance = _decimal(data.get('balance'), Decimal('0'))
            results.append({'clientId': client_id, 'action': action})
        db.session.commit()
    except PAYLOAD_ERRORS as exc:
        return _failed('customers', exc)

    current_app.logger.info(f"Sync customers: {len(results)} upserted")
    return jsonify({'synced': len(results), 'results': results})


# ── STATUS ────────────────────────────────────────────────────────

@sync.route('/status')
def status():
    try:
        counts = {
            'products': SyncedProduct.query.count(),
            'orders': SyncedOrder.query.count(),
            'customers': SyncedCustomer.query.count(),
        }
    except SQLAlchemyError as exc:
        return _failed('status', exc)
    return jsonify(counts)
