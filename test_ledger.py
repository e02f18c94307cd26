import pytest
from decimal import Decimal

from tillpoint import create_app, db
from tillpoint.errors import ValidationError, NotFound
from tillpoint.events import ledger_events
from tillpoint.inventory import ledger
from tillpoint.inventory.models import Product, Category, ProductVariant, Batch, TaxRule


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def make_product(name='Rice', price='10', stock=0, category='Food', **extra):
    data = {'name': name, 'price': price, 'stock': stock,
            'category': {'new_category_name': category}}
    data.update(extra)
    return ledger.create_product(data)


def receive(product, quantity, **extra):
    data = {'product_id': product.id, 'batch_number': f'B-{quantity}',
            'quantity': quantity, 'cost_price': '4.00'}
    data.update(extra)
    return ledger.create_batch(data)


# ── Products & categories ─────────────────────────────────────────

def test_create_product_with_new_category(app):
    product = make_product()
    category = Category.query.filter_by(name='Food').one()
    assert product.category == 'Food'
    assert product.category_id == category.id
    assert product.is_active is True
    assert product.low_stock_threshold == 10


def test_create_product_with_existing_category(app):
    make_product()
    food = Category.query.filter_by(name='Food').one()
    other = ledger.create_product({
        'name': 'Beans', 'price': '6',
        'category': {'existing_category_id': food.id},
    })
    assert other.category_id == food.id
    assert Category.query.count() == 1


def test_category_choice_must_be_exactly_one(app):
    with pytest.raises(ValidationError) as exc:
        ledger.create_product({
            'name': 'Beans', 'price': '6',
            'category': {'existing_category_id': 1, 'new_category_name': 'Food'},
        })
    assert 'category' in exc.value.errors
    assert Product.query.count() == 0


def test_invalid_product_writes_nothing(app):
    with pytest.raises(ValidationError) as exc:
        ledger.create_product({'name': '', 'price': '-3', 'category': {'new_category_name': 'Food'}})
    assert set(exc.value.errors) >= {'name', 'price'}
    assert Product.query.count() == 0
    assert Category.query.count() == 0


def test_duplicate_barcode_rejected(app):
    make_product(barcode='1001')
    with pytest.raises(ValidationError) as exc:
        make_product(name='Other', barcode='1001')
    assert 'barcode' in exc.value.errors


def test_category_rename_cascades_to_its_products_only(app):
    rice = make_product('Rice', category='Food')
    beans = make_product('Beans', category='Food')
    cola = make_product('Cola', category='Drinks')
    food = Category.query.filter_by(name='Food').one()

    ledger.update_category(food.id, {'name': 'Meals'})

    assert db.session.get(Product, rice.id).category == 'Meals'
    assert db.session.get(Product, beans.id).category == 'Meals'
    assert db.session.get(Product, cola.id).category == 'Drinks'


def test_delete_category_keeps_products(app):
    rice = make_product()
    food = Category.query.filter_by(name='Food').one()
    ledger.delete_category(food.id)

    product = db.session.get(Product, rice.id)
    assert product.category_id is None
    assert product.category == 'Food'


def test_toggle_and_barcode_lookup_ignores_inactive(app):
    rice = make_product(barcode='1001')
    assert ledger.find_by_barcode('1001').id == rice.id

    ledger.toggle_product_active(rice.id)
    assert ledger.find_by_barcode('1001') is None
    assert ledger.find_by_barcode('') is None


def test_partial_update_keeps_other_fields(app):
    rice = make_product(barcode='1001', sku='RC-1')
    ledger.update_product(rice.id, {'price': '12.50'})
    product = db.session.get(Product, rice.id)
    assert product.price == Decimal('12.50')
    assert product.barcode == '1001'
    assert product.sku == 'RC-1'


def test_delete_product_cascades_variants_and_batches(app):
    rice = make_product()
    ledger.create_variant({'product_id': rice.id, 'name': '5kg', 'price': '45'})
    receive(rice, 10)

    ledger.delete_product(rice.id)

    assert Product.query.count() == 0
    assert ProductVariant.query.count() == 0
    assert Batch.query.count() == 0


def test_missing_product_raises_not_found(app):
    with pytest.raises(NotFound):
        ledger.update_product(999, {'price': '1'})


# ── Batches ↔ stock ───────────────────────────────────────────────

def test_batch_create_credits_remaining_quantity(app):
    rice = make_product(stock=5)
    batch = receive(rice, 10)
    assert batch.remaining_quantity == 10
    assert db.session.get(Product, rice.id).stock == 15


def test_batch_edit_moves_stock_by_delta(app):
    rice = make_product(stock=5)
    batch = receive(rice, 10)
    ledger.update_batch(batch.id, {
        'product_id': rice.id, 'batch_number': batch.batch_number,
        'quantity': 10, 'remaining_quantity': 4, 'cost_price': '4.00',
    })
    assert db.session.get(Product, rice.id).stock == 9


def test_batch_moved_to_another_product(app):
    rice = make_product('Rice')
    beans = make_product('Beans')
    batch = receive(rice, 10)

    ledger.update_batch(batch.id, {
        'product_id': beans.id, 'batch_number': batch.batch_number,
        'quantity': 10, 'remaining_quantity': 8, 'cost_price': '4.00',
    })

    assert db.session.get(Product, rice.id).stock == 0
    assert db.session.get(Product, beans.id).stock == 8


def test_batch_delete_debits_and_clamps_at_zero(app):
    rice = make_product()
    batch = receive(rice, 10)
    ledger.update_product(rice.id, {'stock': 3})

    ledger.delete_batch(batch.id)

    assert db.session.get(Product, rice.id).stock == 0
    assert Batch.query.count() == 0


def test_batch_remaining_cannot_exceed_quantity(app):
    rice = make_product()
    with pytest.raises(ValidationError) as exc:
        receive(rice, 5, remaining_quantity=6)
    assert 'remaining_quantity' in exc.value.errors
    assert db.session.get(Product, rice.id).stock == 0


def test_batch_variant_must_belong_to_product(app):
    rice = make_product('Rice')
    beans = make_product('Beans')
    variant = ledger.create_variant({'product_id': beans.id, 'name': '1kg', 'price': '8'})
    with pytest.raises(ValidationError):
        receive(rice, 5, variant_id=variant.id)


def test_delete_variant_keeps_its_batches(app):
    rice = make_product()
    variant = ledger.create_variant({'product_id': rice.id, 'name': '5kg', 'price': '45'})
    batch = receive(rice, 5, variant_id=variant.id)

    ledger.delete_variant(variant.id)

    assert db.session.get(Batch, batch.id).variant_id is None
    assert db.session.get(Product, rice.id).stock == 5


def test_stock_discrepancies_reported_not_corrected(app):
    rice = make_product('Rice', stock=5)
    beans = make_product('Beans')
    receive(rice, 10)
    receive(beans, 4)

    report = ledger.stock_discrepancies()

    assert report == [{
        'product_id': rice.id, 'name': 'Rice', 'stock': 15,
        'batch_remaining': 10, 'difference': 5,
    }]
    assert db.session.get(Product, rice.id).stock == 15


# ── Tax rules ─────────────────────────────────────────────────────

def test_single_default_tax_rule(app):
    vat = ledger.create_tax_rule({'name': 'VAT', 'rate': '15', 'is_default': True})
    nhil = ledger.create_tax_rule({'name': 'NHIL', 'rate': '2.5', 'is_default': True})

    assert db.session.get(TaxRule, vat.id).is_default is False
    assert ledger.default_tax_rule().id == nhil.id
    assert nhil.rate_decimal == Decimal('0.025')


def test_inactive_default_is_ignored(app):
    vat = ledger.create_tax_rule({'name': 'VAT', 'rate': '15', 'is_default': True})
    ledger.update_tax_rule(vat.id, {'name': 'VAT', 'rate': '15', 'is_default': True, 'is_active': False})
    assert ledger.default_tax_rule() is None


def test_tax_rate_above_hundred_rejected(app):
    with pytest.raises(ValidationError) as exc:
        ledger.create_tax_rule({'name': 'Bad', 'rate': '150'})
    assert 'rate' in exc.value.errors


# ── Live subscriptions ────────────────────────────────────────────

def test_subscribers_see_committed_tables(app):
    seen = []
    unsubscribe = ledger_events.subscribe({'batches'}, seen.append)
    try:
        rice = make_product()
        assert seen == []

        receive(rice, 3)
        assert len(seen) == 1
        assert {'batches', 'products'} <= seen[0]
    finally:
        unsubscribe()

    receive(rice, 4)
    assert len(seen) == 1


def test_rolled_back_writes_are_not_dispatched(app):
    seen = []
    unsubscribe = ledger_events.subscribe({'products'}, seen.append)
    try:
        db.session.add(Product(name='Ghost', price=Decimal('1'), category=''))
        db.session.flush()
        db.session.rollback()
        assert seen == []
    finally:
        unsubscribe()
