"""
tillpoint/billing/routes.py
---------------------------
JSON endpoints for the till: the session cart, checkout, drafts, quotes
and the transaction list. Every handler loads the cart, hands it to a
CheckoutService and stores it back.
"""
from flask import request, jsonify, current_app
from sqlalchemy import or_, cast, String

from tillpoint.billing import billing
from tillpoint.billing.cart import load_cart, store_cart
from tillpoint.billing.checkout import CheckoutService, CheckoutKind
from tillpoint.billing.scanner import load_scanner, store_scanner
from tillpoint.billing.models import Order, OrderItem, OrderStatus
from tillpoint.billing.pricing import format_money
from tillpoint.errors import ValidationError
from tillpoint.utils.persistence import get_or_raise


def _service() -> CheckoutService:
    return CheckoutService.for_app(load_cart())


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _cart_response(service: CheckoutService, status=200, **extra):
    store_cart(service.cart)
    breakdown = service.cart.breakdown()
    body = {
        'cart': service.cart.to_dict(),
        'totals': breakdown.to_dict(),
        'display': {k: format_money(v) for k, v in (
            ('subtotal', breakdown.subtotal), ('tax', breakdown.tax),
            ('discount', breakdown.discount), ('total', breakdown.total),
        )},
    }
    body.update(extra)
    return jsonify(body), status


def _int_field(data: dict, name: str) -> int:
    try:
        return int(data.get(name))
    except (TypeError, ValueError):
        raise ValidationError({name: f'{name} must be an integer.'})


# ── CART ──────────────────────────────────────────────────────────

@billing.route('/cart')
def cart():
    return _cart_response(_service())


@billing.route('/cart/add', methods=['POST'])
def add_item():
    service = _service()
    service.add_product(_int_field(_payload(), 'product_id'))
    return _cart_response(service)


@billing.route('/cart/scan', methods=['POST'])
def scan():
    """Barcode lookup; an unknown code leaves the cart as it was."""
    service = _service()
    barcode = str(_payload().get('barcode', '')).strip()
    line = service.scan_barcode(barcode)
    if line is None:
        return _cart_response(service, 404, error=f'No product found for barcode "{barcode}".')
    return _cart_response(service)


@billing.route('/cart/keys', methods=['POST'])
def keys():
    """
    Raw keystrokes from a keyboard-wedge scanner: {"keys": [{"key": "4",
    "at_ms": 1200.5}, ...]}. A partial burst is kept for the next batch.
    """
    events = _payload().get('keys')
    if not isinstance(events, list):
        raise ValidationError({'keys': 'keys must be a list of keystrokes.'})

    service = CheckoutService.for_app(load_cart(), load_scanner())
    scanned, missed = [], []
    for event in events:
        if not isinstance(event, dict) or not isinstance(event.get('key'), str):
            raise ValidationError({'keys': 'Each keystroke needs a "key" string.'})
        at_ms = event.get('at_ms')
        if at_ms is not None and not isinstance(at_ms, (int, float)):
            raise ValidationError({'keys': 'at_ms must be a number of milliseconds.'})
        code, line = service.feed_key(event['key'], at_ms)
        if code is not None:
            (scanned if line is not None else missed).append(code)

    store_scanner(service.scanner)
    return _cart_response(service, scanned=scanned, missed=missed)


@billing.route('/cart/remove', methods=['POST'])
def remove_item():
    service = _service()
    service.cart.remove_line(_int_field(_payload(), 'product_id'))
    return _cart_response(service)


@billing.route('/cart/quantity', methods=['POST'])
def set_quantity():
    data = _payload()
    service = _service()
    service.cart.set_quantity(_int_field(data, 'product_id'), _int_field(data, 'quantity'))
    return _cart_response(service)


@billing.route('/cart/line-discount', methods=['POST'])
def line_discount():
    data = _payload()
    service = _service()
    service.set_line_discount(_int_field(data, 'product_id'), data.get('amount', '0'))
    return _cart_response(service)


@billing.route('/cart/discount', methods=['POST'])
def order_discount():
    data = _payload()
    service = _service()
    service.set_order_discount(data.get('amount', '0'), data.get('type', 'flat'))
    return _cart_response(service)


@billing.route('/cart/tax-rule', methods=['POST'])
def tax_rule():
    data = _payload()
    service = _service()
    rule_id = data.get('tax_rule_id')
    service.set_tax_rule(None if rule_id in (None, '') else _int_field(data, 'tax_rule_id'))
    return _cart_response(service)


@billing.route('/cart/clear', methods=['POST'])
def clear():
    service = _service()
    service.cart.clear()
    return _cart_response(service)


# ── CHECKOUT ──────────────────────────────────────────────────────

@billing.route('/checkout', methods=['POST'])
def checkout():
    data = _payload()
    service = _service()
    try:
        kind = CheckoutKind(data.get('kind', 'sale'))
    except ValueError:
        raise ValidationError({'kind': 'Kind must be sale, refund or cancel.'})

    order = service.checkout(
        payments=data.get('payments'),
        method=data.get('method'),
        kind=kind,
        customer_id=data.get('customer_id'),
        notes=data.get('notes'),
    )
    store_cart(service.cart)
    return jsonify({'order': order.to_dict(), 'message': f'Order {order.id} recorded.'}), 201


@billing.route('/orders/<int:order_id>/refund', methods=['POST'])
def refund(order_id):
    reversal = _service().reverse_order(order_id, CheckoutKind.refund, _payload().get('notes'))
    return jsonify({'order': reversal.to_dict()}), 201


@billing.route('/orders/<int:order_id>/cancel', methods=['POST'])
def cancel(order_id):
    reversal = _service().reverse_order(order_id, CheckoutKind.cancel, _payload().get('notes'))
    return jsonify({'order': reversal.to_dict()}), 201


# ── DRAFTS ────────────────────────────────────────────────────────

@billing.route('/drafts')
def drafts():
    return jsonify([d.to_dict() for d in CheckoutService.list_drafts()])


@billing.route('/drafts', methods=['POST'])
def save_draft():
    data = _payload()
    service = _service()
    draft = service.save_draft(customer_id=data.get('customer_id'), notes=data.get('notes'))
    store_cart(service.cart)
    return jsonify({'draft': draft.to_dict()}), 201


@billing.route('/drafts/<int:order_id>/load', methods=['POST'])
def load_draft(order_id):
    service = _service()
    service.load_draft(order_id)
    return _cart_response(service)


# ── QUOTES ────────────────────────────────────────────────────────

@billing.route('/quotes')
def quotes():
    return jsonify([q.to_dict() for q in CheckoutService.list_quotes()])


@billing.route('/quotes', methods=['POST'])
def save_quote():
    data = _payload()
    service = _service()
    quote = service.save_quote(
        customer_name=data.get('customer_name'),
        notes=data.get('notes'),
        valid_days=data.get('valid_days'),
    )
    store_cart(service.cart)
    return jsonify({'quote': quote.to_dict()}), 201


@billing.route('/quotes/<int:quote_id>/convert', methods=['POST'])
def convert_quote(quote_id):
    service = _service()
    service.convert_quote(quote_id)
    return _cart_response(service)


@billing.route('/quotes/<int:quote_id>', methods=['DELETE'])
def delete_quote(quote_id):
    CheckoutService.delete_quote(quote_id)
    return jsonify({'message': f'Quote {quote_id} deleted.'})


@billing.route('/quotes/expire', methods=['POST'])
def expire_quotes():
    return jsonify({'expired': CheckoutService.expire_quotes()})


# ── TRANSACTIONS ──────────────────────────────────────────────────

@billing.route('/orders')
def orders():
    """
    Order list, newest first.
    ?status=completed|refunded|...   ?q=<order id or item name>
    """
    query = Order.query

    status = request.args.get('status', '').strip()
    if status:
        try:
            query = query.filter(Order.status == OrderStatus(status))
        except ValueError:
            raise ValidationError({'status': f'Unknown status "{status}".'})

    q = request.args.get('q', '').strip()
    if q:
        matching = OrderItem.query.with_entities(OrderItem.order_id).filter(OrderItem.name.ilike(f'%{q}%'))
        query = query.filter(or_(
            cast(Order.id, String).ilike(f'%{q}%'),
            Order.id.in_(matching),
        ))

    limit = min(request.args.get('limit', 100, type=int), 500)
    results = query.order_by(Order.created_at.desc(), Order.id.desc()).limit(limit).all()
    current_app.logger.debug(f"Order list: status={status or '*'} q={q!r} -> {len(results)}")
    return jsonify([o.to_dict() for o in results])


@billing.route('/orders/<int:order_id>')
def order_detail(order_id):
    return jsonify(get_or_raise(Order, order_id).to_dict())
