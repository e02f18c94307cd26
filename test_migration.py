import pytest
from sqlalchemy import text, inspect

from tillpoint import create_app, db
from tillpoint.inventory.models import Product
from tillpoint.migration import SCHEMA_VERSION, SchemaVersion, run_auto_migration


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


def product_columns():
    return {c['name'] for c in inspect(db.engine).get_columns('products')}


def test_fresh_database_reaches_current_version(app):
    assert run_auto_migration(app) == SCHEMA_VERSION
    assert SchemaVersion.query.count() == 1
    assert {'synced_at', 'low_stock_threshold', 'category_id'} <= product_columns()


def test_migration_is_idempotent(app):
    run_auto_migration(app)
    assert run_auto_migration(app) == SCHEMA_VERSION
    assert SchemaVersion.query.count() == 1


def test_legacy_products_table_is_extended_and_backfilled(app):
    with db.engine.begin() as conn:
        conn.execute(text(
            "CREATE TABLE products ("
            " id INTEGER PRIMARY KEY, name VARCHAR(200) NOT NULL,"
            " price NUMERIC(12, 2) NOT NULL, category VARCHAR(100) NOT NULL,"
            " stock INTEGER NOT NULL, barcode VARCHAR(100))"
        ))
        conn.execute(text(
            "INSERT INTO products (id, name, price, category, stock, barcode)"
            " VALUES (1, 'Rice', 10, 'Food', 4, '1001')"
        ))

    run_auto_migration(app)

    assert {'low_stock_threshold', 'is_active', 'created_at', 'updated_at', 'synced_at'} <= product_columns()
    rice = db.session.get(Product, 1)
    assert rice.name == 'Rice'
    assert rice.stock == 4
    assert rice.low_stock_threshold == app.config['DEFAULT_LOW_STOCK_THRESHOLD']
    assert rice.is_active is True
    assert rice.created_at is not None
    assert rice.updated_at == rice.created_at
    assert rice.needs_sync


def test_existing_values_are_not_overwritten(app):
    run_auto_migration(app)
    with db.engine.begin() as conn:
        conn.execute(text(
            "INSERT INTO products (id, name, price, category, stock, low_stock_threshold, is_active,"
            " created_at, updated_at) VALUES (1, 'Salt', 2, '', 0, 3, 0,"
            " '2026-01-01 00:00:00', '2026-01-02 00:00:00')"
        ))

    run_auto_migration(app)

    salt = db.session.get(Product, 1)
    assert salt.low_stock_threshold == 3
    assert salt.is_active is False
    assert salt.updated_at > salt.created_at
