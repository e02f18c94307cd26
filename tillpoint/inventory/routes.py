"""
tillpoint/inventory/routes.py
-----------------------------
JSON management endpoints for products, categories, variants, batches
and tax rules. All writes go through tillpoint.inventory.ledger.
"""
from flask import request, jsonify, current_app
from sqlalchemy import or_

from tillpoint.inventory import inventory, ledger
from tillpoint.inventory.models import Product, Category, ProductVariant, Batch, TaxRule
from tillpoint.utils.persistence import get_or_raise


def _payload() -> dict:
    return request.get_json(silent=True) or {}


# ── PRODUCTS ──────────────────────────────────────────────────────

@inventory.route('/')
def index():
    """
    Product list with optional search / filter.
    ?q=<name|barcode|sku>   ?category=<name>   ?active=1|0   ?low=1
    """
    query = Product.query
    q = request.args.get('q', '').strip()
    if q:
        query = query.filter(or_(
            Product.name.ilike(f'%{q}%'),
            Product.barcode == q,
            Product.sku.ilike(f'%{q}%'),
        ))
    category = request.args.get('category', '').strip()
    if category:
        query = query.filter(Product.category == category)
    active = request.args.get('active')
    if active in ('0', '1'):
        query = query.filter(Product.is_active.is_(active == '1'))
    if request.args.get('low') == '1':
        query = query.filter(Product.stock <= Product.low_stock_threshold)

    products = query.order_by(Product.name.asc()).all()
    return jsonify([p.to_dict() for p in products])


@inventory.route('/', methods=['POST'])
def create_product():
    product = ledger.create_product(_payload())
    return jsonify(product.to_dict()), 201


@inventory.route('/<int:product_id>')
def product_detail(product_id):
    product = get_or_raise(Product, product_id)
    body = product.to_dict()
    body['variants'] = [v.to_dict() for v in product.variants]
    body['batches'] = [b.to_dict() for b in product.batches]
    return jsonify(body)


@inventory.route('/<int:product_id>', methods=['PATCH'])
def update_product(product_id):
    return jsonify(ledger.update_product(product_id, _payload()).to_dict())


@inventory.route('/<int:product_id>/toggle', methods=['POST'])
def toggle_product(product_id):
    return jsonify(ledger.toggle_product_active(product_id).to_dict())


@inventory.route('/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    ledger.delete_product(product_id)
    return jsonify({'message': f'Product {product_id} deleted.'})


@inventory.route('/barcode/<barcode>')
def lookup_barcode(barcode):
    product = ledger.find_by_barcode(barcode)
    if product is None:
        return jsonify({'error': f'No product found for barcode "{barcode}".'}), 404
    return jsonify(product.to_dict())


@inventory.route('/discrepancies')
def discrepancies():
    report = ledger.stock_discrepancies()
    if report:
        current_app.logger.warning(f"{len(report)} product(s) with stock not matching batch totals")
    return jsonify(report)


# ── CATEGORIES ────────────────────────────────────────────────────

@inventory.route('/categories')
def categories():
    return jsonify([c.to_dict() for c in Category.query.order_by(Category.name.asc()).all()])


@inventory.route('/categories', methods=['POST'])
def create_category():
    return jsonify(ledger.create_category(_payload()).to_dict()), 201


@inventory.route('/categories/<int:category_id>', methods=['PATCH'])
def update_category(category_id):
    return jsonify(ledger.update_category(category_id, _payload()).to_dict())


@inventory.route('/categories/<int:category_id>', methods=['DELETE'])
def delete_category(category_id):
    ledger.delete_category(category_id)
    return jsonify({'message': f'Category {category_id} deleted.'})


# ── VARIANTS ──────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/variants')
def variants(product_id):
    get_or_raise(Product, product_id)
    rows = ProductVariant.query.filter_by(product_id=product_id).order_by(ProductVariant.name).all()
    return jsonify([v.to_dict() for v in rows])


@inventory.route('/variants', methods=['POST'])
def create_variant():
    return jsonify(ledger.create_variant(_payload()).to_dict()), 201


@inventory.route('/variants/<int:variant_id>', methods=['PUT'])
def update_variant(variant_id):
    return jsonify(ledger.update_variant(variant_id, _payload()).to_dict())


@inventory.route('/variants/<int:variant_id>', methods=['DELETE'])
def delete_variant(variant_id):
    ledger.delete_variant(variant_id)
    return jsonify({'message': f'Variant {variant_id} deleted.'})


# ── BATCHES ───────────────────────────────────────────────────────

@inventory.route('/<int:product_id>/batches')
def batches(product_id):
    """Batches for a product, soonest expiry first."""
    get_or_raise(Product, product_id)
    rows = (Batch.query.filter_by(product_id=product_id)
            .order_by(Batch.expiry_date.is_(None), Batch.expiry_date.asc(), Batch.id.asc())
            .all())
    return jsonify([b.to_dict() for b in rows])


@inventory.route('/batches', methods=['POST'])
def create_batch():
    return jsonify(ledger.create_batch(_payload()).to_dict()), 201


@inventory.route('/batches/<int:batch_id>', methods=['PUT'])
def update_batch(batch_id):
    return jsonify(ledger.update_batch(batch_id, _payload()).to_dict())


@inventory.route('/batches/<int:batch_id>', methods=['DELETE'])
def delete_batch(batch_id):
    ledger.delete_batch(batch_id)
    return jsonify({'message': f'Batch {batch_id} deleted.'})


# ── TAX RULES ─────────────────────────────────────────────────────

@inventory.route('/tax-rules')
def tax_rules():
    return jsonify([r.to_dict() for r in TaxRule.query.order_by(TaxRule.name.asc()).all()])


@inventory.route('/tax-rules', methods=['POST'])
def create_tax_rule():
    return jsonify(ledger.create_tax_rule(_payload()).to_dict()), 201


@inventory.route('/tax-rules/<int:rule_id>', methods=['PUT'])
def update_tax_rule(rule_id):
    return jsonify(ledger.update_tax_rule(rule_id, _payload()).to_dict())


@inventory.route('/tax-rules/<int:rule_id>', methods=['DELETE'])
def delete_tax_rule(rule_id):
    ledger.delete_tax_rule(rule_id)
    return jsonify({'message': f'Tax rule {rule_id} deleted.'})
