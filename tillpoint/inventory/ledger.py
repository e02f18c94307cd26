"""
tillpoint/inventory/ledger.py
-----------------------------
Write operations on the local inventory ledger.

Every public function validates its input, applies the write together
with its cross-entity side effects, and commits, or rolls back and
re-raises. The side effects live here and nowhere else:

    Batch create / edit / delete  →  Product.stock moves by the change in
                                     remaining_quantity, floored at 0
    Category rename               →  Product.category follows the new name
    Product delete                →  its variants and batches are deleted
    Tax rule set as default       →  every other rule stops being default

Product.stock is NOT reconciled against the sum of batch remainders;
stock_discrepancies() reports the difference without correcting it.
"""
import logging
from typing import Optional

from sqlalchemy import func

from tillpoint import db
from tillpoint.errors import ValidationError
from tillpoint.utils.persistence import unit_of_work, get_or_raise
from tillpoint.inventory.models import Product, Category, ProductVariant, Batch, TaxRule
from tillpoint.inventory.validators import (
    validate_product_form, parse_product_form,
    validate_category_form, parse_category_form, validate_category_choice,
    validate_variant_form, parse_variant_form,
    validate_batch_form, parse_batch_form,
    validate_tax_rule_form, parse_tax_rule_form,
)

logger = logging.getLogger(__name__)


def _adjust_stock(product: Product, delta: int, reason: str) -> None:
    """Move product stock by `delta`, clamping at zero."""
    if delta == 0:
        return
    old_stock = product.stock
    product.stock = max(0, old_stock + delta)
    product.touch()
    logger.info(f"Stock {product.name!r}: {old_stock} -> {product.stock} ({reason})")


# ═══════════════════════════════════════════════════════════════════
# Categories
# ═══════════════════════════════════════════════════════════════════

def create_category(data: dict) -> Category:
    errors = validate_category_form(data)
    fields = parse_category_form(data) if not errors else {}
    if not errors and Category.query.filter_by(name=fields['name']).first():
        errors['name'] = 'A category with this name already exists.'
    if errors:
        raise ValidationError(errors)

    with unit_of_work():
        category = Category(**fields)
        db.session.add(category)
    return category


def update_category(category_id: int, data: dict) -> Category:
    """
    Edit a category. A rename rewrites the category name on every
    product that carried the old name, and on no others.
    """
    category = get_or_raise(Category, category_id)
    errors = validate_category_form(data)
    fields = parse_category_form(data) if not errors else {}
    if not errors:
        clash = Category.query.filter(
            Category.name == fields['name'], Category.id != category_id
        ).first()
        if clash:
            errors['name'] = 'A category with this name already exists.'
    if errors:
        raise ValidationError(errors)

    old_name = category.name
    with unit_of_work():
        for field, value in fields.items():
            setattr(category, field, value)

        if fields['name'] != old_name:
            renamed = Product.query.filter(Product.category == old_name).all()
            for product in renamed:
                product.category = fields['name']
                product.touch()
            logger.info(f"Category renamed {old_name!r} -> {fields['name']!r} ({len(renamed)} products)")
    return category


def delete_category(category_id: int) -> None:
    """Products keep the (now orphaned) category name."""
    category = get_or_raise(Category, category_id)
    with unit_of_work():
        for product in Product.query.filter(Product.category_id == category_id).all():
            product.category_id = None
        db.session.delete(category)


def resolve_category(choice: dict) -> Category:
    """
    Resolve a discriminated category choice to a Category, creating
    the category when a new name is given (or reusing one that already
    has that name). Does not commit.
    """
    errors = validate_category_choice(choice)
    if errors:
        raise ValidationError(errors)

    if choice.get('existing_category_id') not in (None, ''):
        category = db.session.get(Category, int(choice['existing_category_id']))
        if category is None:
            raise ValidationError({'category': 'The selected category no longer exists.'})
        return category

    name = str(choice['new_category_name']).strip()
    category = Category.query.filter_by(name=name).first()
    if category is None:
        category = Category(name=name)
        db.session.add(category)
        db.session.flush()
    return category


# ═══════════════════════════════════════════════════════════════════
# Products
# ═══════════════════════════════════════════════════════════════════

def _check_barcode_unique(errors, barcode, product_id=None):
    if not barcode:
        return
    query = Product.query.filter(Product.barcode == barcode)
    if product_id is not None:
        query = query.filter(Product.id != product_id)
    if query.first():
        errors['barcode'] = 'A product with this barcode already exists.'


def create_product(data: dict) -> Product:
    errors = validate_product_form(data)
    fields = parse_product_form(data) if not errors else {}
    if not errors:
        _check_barcode_unique(errors, fields.get('barcode'))
    if errors:
        raise ValidationError(errors)

    with unit_of_work():
        category = resolve_category(data['category'])
        product = Product(category=category.name, category_id=category.id, **fields)
        db.session.add(product)
    logger.info(f"Product created: {product.name} (stock {product.stock})")
    return product


def update_product(product_id: int, data: dict) -> Product:
    product = get_or_raise(Product, product_id)
    errors = validate_product_form(data, partial=True)
    fields = parse_product_form(data, partial=True) if not errors else {}
    if not errors and 'barcode' in fields:
        _check_barcode_unique(errors, fields['barcode'], product_id)
    if errors:
        raise ValidationError(errors)

    with unit_of_work():
        if 'category' in data:
            category = resolve_category(data['category'])
            product.category, product.category_id = category.name, category.id
        for field, value in fields.items():
            setattr(product, field, value)
        product.touch()
    return product


def toggle_product_active(product_id: int) -> Product:
    product = get_or_raise(Product, product_id)
    with unit_of_work():
        product.is_active = not product.is_active
        product.touch()
    logger.info(f"Product {product.name!r} {'activated' if product.is_active else 'deactivated'}")
    return product


def delete_product(product_id: int) -> None:
    """Hard delete; variants and batches go with the product."""
    product = get_or_raise(Product, product_id)
    name = product.name
    with unit_of_work():
        db.session.delete(product)
    logger.info(f"Product deleted: {name} (id {product_id})")


def find_by_barcode(barcode: str) -> Optional[Product]:
    """Active product carrying `barcode`, or None."""
    barcode = (barcode or '').strip()
    if not barcode:
        return None
    return Product.query.filter_by(barcode=barcode, is_active=True).first()


# ═══════════════════════════════════════════════════════════════════
# Variants
# ═══════════════════════════════════════════════════════════════════

def _variant_fields(data: dict) -> dict:
    errors = validate_variant_form(data)
    if errors:
        raise ValidationError(errors)
    fields = parse_variant_form(data)
    if db.session.get(Product, fields['product_id']) is None:
        raise ValidationError({'product_id': 'The selected product no longer exists.'})
    return fields


def create_variant(data: dict) -> ProductVariant:
    fields = _variant_fields(data)
    with unit_of_work():
        variant = ProductVariant(**fields)
        db.session.add(variant)
    return variant


def update_variant(variant_id: int, data: dict) -> ProductVariant:
    variant = get_or_raise(ProductVariant, variant_id)
    fields = _variant_fields(data)
    with unit_of_work():
        for field, value in fields.items():
            setattr(variant, field, value)
    return variant


def delete_variant(variant_id: int) -> None:
    """Batches received against the variant stay on the product."""
    variant = get_or_raise(ProductVariant, variant_id)
    with unit_of_work():
        for batch in Batch.query.filter(Batch.variant_id == variant_id).all():
            batch.variant_id = None
        db.session.delete(variant)


# ═══════════════════════════════════════════════════════════════════
# Batches
# ═══════════════════════════════════════════════════════════════════

def _batch_fields(data: dict) -> dict:
    errors = validate_batch_form(data)
    if errors:
        raise ValidationError(errors)
    fields = parse_batch_form(data)
    if db.session.get(Product, fields['product_id']) is None:
        raise ValidationError({'product_id': 'The selected product no longer exists.'})
    if fields['variant_id'] is not None:
        variant = db.session.get(ProductVariant, fields['variant_id'])
        if variant is None or variant.product_id != fields['product_id']:
            raise ValidationError({'variant_id': 'Variant does not belong to the selected product.'})
    return fields


def create_batch(data: dict) -> Batch:
    """Receive a batch; the product gains its remaining quantity."""
    fields = _batch_fields(data)
    with unit_of_work():
        batch = Batch(**fields)
        db.session.add(batch)
        product = db.session.get(Product, fields['product_id'])
        _adjust_stock(product, batch.remaining_quantity, f'Batch {batch.batch_number} received')
    return batch


def update_batch(batch_id: int, data: dict) -> Batch:
    """
    Edit a batch. The product's stock moves by (new remaining − old
    remaining). If the batch is re-assigned to another product, the old
    product loses the old remainder and the new one gains the new.
    """
    batch = get_or_raise(Batch, batch_id)
    fields = _batch_fields(data)
    old_product_id = batch.product_id
    old_remaining  = batch.remaining_quantity

    with unit_of_work():
        for field, value in fields.items():
            setattr(batch, field, value)

        new_product = db.session.get(Product, batch.product_id)
        if batch.product_id == old_product_id:
            _adjust_stock(new_product, batch.remaining_quantity - old_remaining,
                          f'Batch {batch.batch_number} edited')
        else:
            old_product = db.session.get(Product, old_product_id)
            if old_product is not None:
                _adjust_stock(old_product, -old_remaining, f'Batch {batch.batch_number} moved out')
            _adjust_stock(new_product, batch.remaining_quantity, f'Batch {batch.batch_number} moved in')
    return batch


def delete_batch(batch_id: int) -> None:
    """The product loses whatever the batch still had on hand."""
    batch = get_or_raise(Batch, batch_id)
    with unit_of_work():
        product = db.session.get(Product, batch.product_id)
        if product is not None and batch.remaining_quantity > 0:
            _adjust_stock(product, -batch.remaining_quantity, f'Batch {batch.batch_number} deleted')
        db.session.delete(batch)


def stock_discrepancies() -> list:
    """
    Products whose stock differs from the sum of their batches'
    remaining quantities. Reported only; nothing is corrected.
    """
    batch_totals = dict(
        db.session.query(Batch.product_id, func.sum(Batch.remaining_quantity))
        .group_by(Batch.product_id)
        .all()
    )
    report = []
    for product in Product.query.order_by(Product.name.asc()).all():
        batch_total = int(batch_totals.get(product.id) or 0)
        if batch_total != product.stock:
            report.append({
                'product_id': product.id,
                'name': product.name,
                'stock': product.stock,
                'batch_remaining': batch_total,
                'difference': product.stock - batch_total,
            })
    return report


# ═══════════════════════════════════════════════════════════════════
# Tax rules
# ═══════════════════════════════════════════════════════════════════

def _clear_defaults(except_id=None) -> None:
    query = TaxRule.query.filter(TaxRule.is_default.is_(True))
    if except_id is not None:
        query = query.filter(TaxRule.id != except_id)
    for rule in query.all():
        rule.is_default = False


def create_tax_rule(data: dict) -> TaxRule:
    errors = validate_tax_rule_form(data)
    if errors:
        raise ValidationError(errors)
    fields = parse_tax_rule_form(data)
    with unit_of_work():
        if fields['is_default']:
            _clear_defaults()
        rule = TaxRule(**fields)
        db.session.add(rule)
    return rule


def update_tax_rule(rule_id: int, data: dict) -> TaxRule:
    rule = get_or_raise(TaxRule, rule_id)
    errors = validate_tax_rule_form(data)
    if errors:
        raise ValidationError(errors)
    fields = parse_tax_rule_form(data)
    with unit_of_work():
        if fields['is_default']:
            _clear_defaults(except_id=rule_id)
        for field, value in fields.items():
            setattr(rule, field, value)
    return rule


def delete_tax_rule(rule_id: int) -> None:
    rule = get_or_raise(TaxRule, rule_id)
    with unit_of_work():
        db.session.delete(rule)


def default_tax_rule() -> Optional[TaxRule]:
    """The active default rule, if one is set."""
    return TaxRule.query.filter_by(is_default=True, is_active=True).first()
