"""
tillpoint/inventory/validators.py
---------------------------------
Pure-Python validation for inventory request data.
Each validate_* function returns a dict of field -> error_message;
an empty dict means all fields are valid. The matching parse_*
function converts the validated raw values to Python types and must
only be called after validation passed.

Request values may arrive as JSON numbers or as strings, so every
read goes through _text().
"""
from datetime import date
from decimal import Decimal, InvalidOperation


def _text(data: dict, key: str, default: str = '') -> str:
    value = data.get(key)
    if value is None:
        return default
    return str(value).strip()


def _check_decimal(errors, data, key, label, required=True, minimum=Decimal('0')):
    raw = _text(data, key)
    if not raw:
        if required:
            errors[key] = f'{label} is required.'
        return
    try:
        value = Decimal(raw)
    except InvalidOperation:
        errors[key] = f'{label} must be a valid number.'
        return
    if not value.is_finite():
        errors[key] = f'{label} must be a valid number.'
    elif value < minimum:
        errors[key] = f'{label} cannot be negative.'


def _check_int(errors, data, key, label, required=False, minimum=0):
    raw = _text(data, key)
    if not raw:
        if required:
            errors[key] = f'{label} is required.'
        return
    try:
        value = int(raw)
    except ValueError:
        errors[key] = f'{label} must be a whole number.'
        return
    if value < minimum:
        errors[key] = f'{label} must be at least {minimum}.'


def _check_date(errors, data, key, label):
    raw = _text(data, key)
    if not raw:
        return
    try:
        date.fromisoformat(raw[:10])
    except ValueError:
        errors[key] = f'{label} must be a date (YYYY-MM-DD).'


def _parse_date(data, key):
    raw = _text(data, key)
    return date.fromisoformat(raw[:10]) if raw else None


def _flag(data, key, default):
    if key not in data or data.get(key) is None:
        return default
    return data.get(key) in ('1', 'true', 'on', 'yes', True, 1)


# ── Category request (discriminated) ──────────────────────────────

def validate_category_choice(choice) -> dict:
    """
    A product's category is chosen with exactly one of:
        {"existing_category_id": 3}
        {"new_category_name": "Snacks"}
    """
    if not isinstance(choice, dict):
        return {'category': 'Category must be an object with existing_category_id or new_category_name.'}
    has_existing = choice.get('existing_category_id') not in (None, '')
    has_new      = bool(_text(choice, 'new_category_name'))
    if has_existing == has_new:
        return {'category': 'Choose an existing category or name a new one (not both).'}
    if has_existing:
        try:
            int(choice['existing_category_id'])
        except (TypeError, ValueError):
            return {'category': 'existing_category_id must be a whole number.'}
    elif len(_text(choice, 'new_category_name')) > 100:
        return {'category': 'Category name must be 100 characters or fewer.'}
    return {}


# ── Product ───────────────────────────────────────────────────────

def validate_product_form(form_data: dict, partial: bool = False) -> dict:
    """
    Validate raw data for create (partial=False) or edit (partial=True)
    of a product. On edit only the supplied keys are checked.
    """
    errors = {}

    def wanted(key):
        return not partial or key in form_data

    # ── name ─────────────────────────────────────────────────────
    if wanted('name'):
        name = _text(form_data, 'name')
        if not name:
            errors['name'] = 'Product name is required.'
        elif len(name) > 200:
            errors['name'] = 'Product name must be 200 characters or fewer.'

    # ── price ─────────────────────────────────────────────────────
    if wanted('price'):
        _check_decimal(errors, form_data, 'price', 'Price')

    # ── category ─────────────────────────────────────────────────
    if wanted('category'):
        errors.update(validate_category_choice(form_data.get('category')))

    # ── stock / threshold ────────────────────────────────────────
    if 'stock' in form_data:
        _check_int(errors, form_data, 'stock', 'Stock')
    if 'low_stock_threshold' in form_data:
        _check_int(errors, form_data, 'low_stock_threshold', 'Low stock threshold')

    # ── optional identifiers ─────────────────────────────────────
    for key, label in (('barcode', 'Barcode'), ('sku', 'SKU')):
        if len(_text(form_data, key)) > 100:
            errors[key] = f'{label} must be 100 characters or fewer.'

    return errors


def parse_product_form(form_data: dict, partial: bool = False) -> dict:
    """
    Convert validated product data to column values. The category
    choice is left in place for the ledger to resolve.
    """
    parsed = {}
    if not partial or 'name' in form_data:
        parsed['name'] = _text(form_data, 'name')
    if not partial or 'price' in form_data:
        parsed['price'] = Decimal(_text(form_data, 'price'))
    if 'stock' in form_data and _text(form_data, 'stock'):
        parsed['stock'] = int(_text(form_data, 'stock'))
    if 'low_stock_threshold' in form_data and _text(form_data, 'low_stock_threshold'):
        parsed['low_stock_threshold'] = int(_text(form_data, 'low_stock_threshold'))
    for key in ('barcode', 'sku', 'image', 'description'):
        if not partial or key in form_data:
            parsed[key] = _text(form_data, key) or None
    if not partial or 'is_active' in form_data:
        parsed['is_active'] = _flag(form_data, 'is_active', True)
    return parsed


# ── Category ──────────────────────────────────────────────────────

def validate_category_form(form_data: dict) -> dict:
    errors = {}
    name = _text(form_data, 'name')
    if not name:
        errors['name'] = 'Category name is required.'
    elif len(name) > 100:
        errors['name'] = 'Category name must be 100 characters or fewer.'
    if len(_text(form_data, 'color')) > 20:
        errors['color'] = 'Colour must be 20 characters or fewer.'
    return errors


def parse_category_form(form_data: dict) -> dict:
    return {
        'name':        _text(form_data, 'name'),
        'description': _text(form_data, 'description') or None,
        'color':       _text(form_data, 'color') or None,
    }


# ── Variant ───────────────────────────────────────────────────────

def validate_variant_form(form_data: dict) -> dict:
    errors = {}
    _check_int(errors, form_data, 'product_id', 'Product', required=True, minimum=1)
    if not _text(form_data, 'name'):
        errors['name'] = 'Variant name is required.'
    _check_decimal(errors, form_data, 'price', 'Price')
    _check_int(errors, form_data, 'stock', 'Stock')

    attributes = form_data.get('attributes', {})
    if attributes is None:
        attributes = {}
    if not isinstance(attributes, dict):
        errors['attributes'] = 'Attributes must be a key → value map.'
    elif any(not str(k).strip() for k in attributes):
        errors['attributes'] = 'Attribute names cannot be blank.'
    return errors


def parse_variant_form(form_data: dict) -> dict:
    attributes = form_data.get('attributes') or {}
    return {
        'product_id': int(_text(form_data, 'product_id')),
        'name':       _text(form_data, 'name'),
        'sku':        _text(form_data, 'sku') or None,
        'barcode':    _text(form_data, 'barcode') or None,
        'price':      Decimal(_text(form_data, 'price')),
        'stock':      int(_text(form_data, 'stock', '0') or '0'),
        'attributes': {str(k).strip(): str(v) for k, v in attributes.items()},
    }


# ── Batch ─────────────────────────────────────────────────────────

def validate_batch_form(form_data: dict) -> dict:
    """
    Product, batch number, quantity and cost price are required.
    remaining_quantity defaults to quantity and may not exceed it.
    """
    errors = {}
    _check_int(errors, form_data, 'product_id', 'Product', required=True, minimum=1)
    if form_data.get('variant_id') not in (None, ''):
        _check_int(errors, form_data, 'variant_id', 'Variant', minimum=1)

    batch_number = _text(form_data, 'batch_number')
    if not batch_number:
        errors['batch_number'] = 'Batch number is required.'
    elif len(batch_number) > 60:
        errors['batch_number'] = 'Batch number must be 60 characters or fewer.'

    _check_int(errors, form_data, 'quantity', 'Quantity', required=True, minimum=1)
    _check_int(errors, form_data, 'remaining_quantity', 'Remaining quantity')
    if 'quantity' not in errors and 'remaining_quantity' not in errors:
        remaining = _text(form_data, 'remaining_quantity')
        if remaining and int(remaining) > int(_text(form_data, 'quantity')):
            errors['remaining_quantity'] = 'Remaining quantity cannot exceed the received quantity.'

    _check_decimal(errors, form_data, 'cost_price', 'Cost price')
    _check_date(errors, form_data, 'expiry_date', 'Expiry date')
    _check_date(errors, form_data, 'manufacturing_date', 'Manufacturing date')

    if not errors:
        made, expires = _parse_date(form_data, 'manufacturing_date'), _parse_date(form_data, 'expiry_date')
        if made and expires and made > expires:
            errors['expiry_date'] = 'Expiry date cannot be before the manufacturing date.'
    return errors


def parse_batch_form(form_data: dict) -> dict:
    quantity  = int(_text(form_data, 'quantity'))
    remaining = _text(form_data, 'remaining_quantity')
    variant   = _text(form_data, 'variant_id')
    return {
        'product_id':         int(_text(form_data, 'product_id')),
        'variant_id':         int(variant) if variant else None,
        'batch_number':       _text(form_data, 'batch_number'),
        'quantity':           quantity,
        'remaining_quantity': int(remaining) if remaining else quantity,
        'cost_price':         Decimal(_text(form_data, 'cost_price')),
        'expiry_date':        _parse_date(form_data, 'expiry_date'),
        'manufacturing_date': _parse_date(form_data, 'manufacturing_date'),
        'supplier':           _text(form_data, 'supplier') or None,
        'notes':              _text(form_data, 'notes') or None,
    }


# ── Tax rule ──────────────────────────────────────────────────────

def validate_tax_rule_form(form_data: dict) -> dict:
    """The rate is entered as a percentage (15 == 15%)."""
    errors = {}
    if not _text(form_data, 'name'):
        errors['name'] = 'Tax rule name is required.'
    raw = _text(form_data, 'rate')
    if not raw:
        errors['rate'] = 'Rate is required.'
    else:
        try:
            percent = Decimal(raw)
            if not percent.is_finite() or not (0 <= percent <= 100):
                errors['rate'] = 'Rate must be between 0% and 100%.'
        except InvalidOperation:
            errors['rate'] = 'Rate must be a valid number.'
    return errors


def parse_tax_rule_form(form_data: dict) -> dict:
    return {
        'name':       _text(form_data, 'name'),
        'rate':       Decimal(_text(form_data, 'rate')) / Decimal('100'),
        'is_default': _flag(form_data, 'is_default', False),
        'is_active':  _flag(form_data, 'is_active', True),
    }
