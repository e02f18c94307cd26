"""
tillpoint/migration.py
----------------------
Additive schema evolution for the local ledger.

run_auto_migration() is safe to run on every start:

    1. create_all()             new tables (both binds)
    2. ADD COLUMN               columns older databases are missing,
                                always nullable
    3. backfill                 defaults for rows written before the
                                column existed
    4. schema_versions          records SCHEMA_VERSION once reached

Nothing is ever dropped, renamed or rewritten.
"""
import logging
from datetime import datetime

from sqlalchemy import text, inspect
from sqlalchemy.exc import SQLAlchemyError

from tillpoint import db

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 3


class SchemaVersion(db.Model):
    __tablename__ = 'schema_versions'

    id         = db.Column(db.Integer, primary_key=True)
    version    = db.Column(db.Integer, nullable=False, unique=True)
    applied_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SchemaVersion {self.version}>"


# (table, column, DDL type) for every column added after the first release.
ADDITIVE_COLUMNS = [
    ('products', 'low_stock_threshold', 'INTEGER'),
    ('products', 'is_active',           'BOOLEAN'),
    ('products', 'category_id',         'INTEGER REFERENCES categories(id)'),
    ('products', 'sku',                 'VARCHAR(100)'),
    ('products', 'image',               'TEXT'),
    ('products', 'description',         'TEXT'),
    ('products', 'created_at',          'DATETIME'),
    ('products', 'updated_at',          'DATETIME'),
    ('products', 'synced_at',           'DATETIME'),
    ('orders',   'tax_rule_name',       'VARCHAR(100)'),
    ('orders',   'tax_rate',            'NUMERIC(6, 4)'),
    ('orders',   'discount_type',       'VARCHAR(10)'),
    ('orders',   'customer_id',         'INTEGER REFERENCES customers(id)'),
    ('orders',   'source_order_id',     'INTEGER REFERENCES orders(id)'),
    ('orders',   'notes',               'TEXT'),
    ('orders',   'synced',              'BOOLEAN'),
    ('orders',   'created_at',          'DATETIME'),
    ('quotes',   'notes',               'TEXT'),
    ('quotes',   'valid_until',         'DATETIME'),
    ('batches',  'variant_id',          'INTEGER REFERENCES variants(id)'),
    ('batches',  'manufacturing_date',  'DATE'),
    ('batches',  'supplier',            'VARCHAR(200)'),
    ('batches',  'notes',               'TEXT'),
    ('tax_rules', 'is_active',          'BOOLEAN'),
]


def _backfill_statements(low_stock_default):
    return [
        ("UPDATE products SET low_stock_threshold = :v WHERE low_stock_threshold IS NULL",
         {'v': low_stock_default}),
        ("UPDATE products SET is_active = :v WHERE is_active IS NULL", {'v': True}),
        ("UPDATE products SET created_at = :now WHERE created_at IS NULL", None),
        ("UPDATE products SET updated_at = created_at WHERE updated_at IS NULL", None),
        ("UPDATE orders SET synced = :v WHERE synced IS NULL", {'v': False}),
        ("UPDATE orders SET created_at = :now WHERE created_at IS NULL", None),
        ("UPDATE tax_rules SET is_active = :v WHERE is_active IS NULL", {'v': True}),
    ]


def _import_models():
    # Importing registers every model with db.metadata
    import tillpoint.inventory.models  # noqa: F401
    import tillpoint.billing.models    # noqa: F401
    import tillpoint.customers.models  # noqa: F401
    import tillpoint.sync.models       # noqa: F401


def add_missing_columns(conn) -> list:
    """ALTER TABLE ... ADD COLUMN for each known column that is absent."""
    inspector = inspect(conn)
    existing_tables = set(inspector.get_table_names())
    columns = {}
    added = []

    for table, column, ddl in ADDITIVE_COLUMNS:
        if table not in existing_tables:
            continue
        if table not in columns:
            columns[table] = {c['name'] for c in inspector.get_columns(table)}
        if column in columns[table]:
            continue
        logger.info(f"🛠️  Adding '{column}' to {table}")
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {ddl}"))
        columns[table].add(column)
        added.append((table, column))
    return added


def backfill_defaults(conn, low_stock_default) -> int:
    """Fill defaults into rows that predate a column. Returns rows touched."""
    now = datetime.utcnow()
    touched = 0
    for sql, params in _backfill_statements(low_stock_default):
        params = dict(params or {})
        if ':now' in sql:
            params['now'] = now
        touched += conn.execute(text(sql), params).rowcount or 0
    if touched:
        logger.info(f"Backfilled defaults on {touched} row(s)")
    return touched


def current_version() -> int:
    latest = db.session.query(db.func.max(SchemaVersion.version)).scalar()
    return latest or 0


def run_auto_migration(app) -> int:
    """
    Bring the local ledger up to SCHEMA_VERSION. Returns the version the
    database is at afterwards.
    """
    with app.app_context():
        _import_models()
        logger.info("🔄 Checking database schema...")
        try:
            db.create_all()
            with db.engine.begin() as conn:
                add_missing_columns(conn)
                backfill_defaults(conn, app.config['DEFAULT_LOW_STOCK_THRESHOLD'])

            if current_version() < SCHEMA_VERSION:
                db.session.add(SchemaVersion(version=SCHEMA_VERSION))
                db.session.commit()
                logger.info(f"Schema version recorded: {SCHEMA_VERSION}")
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.error(f"❌ Schema migration failed: {e}")
            raise

        logger.info("✅ Database schema check complete.")
        return current_version()
