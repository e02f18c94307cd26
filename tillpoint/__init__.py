import click
from flask import Flask, jsonify
from flask_sqlalchemy import SQLAlchemy
from config import config

db = SQLAlchemy()


def create_app(config_name='default'):
    """Application factory — creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object(config[config_name])

    # ── Logging ───────────────────────────────────────────────────
    from tillpoint.utils.logging import setup_logging
    setup_logging(app)

    # ── Extensions ────────────────────────────────────────────────
    db.init_app(app)

    from tillpoint.events import ledger_events
    ledger_events.init_app(app)

    from tillpoint.alerts.deriver import alert_feed
    alert_feed.init_app(app)

    # ── Blueprints ────────────────────────────────────────────────
    from tillpoint.main import main as main_blueprint
    app.register_blueprint(main_blueprint)

    from tillpoint.billing import billing as billing_blueprint
    app.register_blueprint(billing_blueprint, url_prefix='/billing')

    from tillpoint.inventory import inventory as inventory_blueprint
    app.register_blueprint(inventory_blueprint, url_prefix='/inventory')

    from tillpoint.customers import customers as customers_blueprint
    app.register_blueprint(customers_blueprint, url_prefix='/customers')

    from tillpoint.sync import sync as sync_blueprint
    app.register_blueprint(sync_blueprint, url_prefix='/api/sync')

    # ── Error Handlers ────────────────────────────────────────────
    from tillpoint.errors import ValidationError, NotFound

    @app.errorhandler(ValidationError)
    def validation_failed(e):
        db.session.rollback()
        return jsonify({'errors': e.errors}), 400

    @app.errorhandler(NotFound)
    def record_missing(e):
        return jsonify({'error': str(e)}), 404

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(500)
    def internal_error(e):
        db.session.rollback()
        return jsonify({'error': 'The operation failed. Please try again.'}), 500

    # ── CLI Commands ──────────────────────────────────────────────
    register_commands(app)

    # ── ProxyFix (HTTPS termination in front of the sync server) ──
    from werkzeug.middleware.proxy_fix import ProxyFix
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    return app


def register_commands(app):
    """Register custom Flask CLI commands."""

    @app.cli.command('init-db')
    def init_db():
        """Create all ledger and sync tables and record the schema version."""
        from tillpoint.migration import run_auto_migration
        run_auto_migration(app)
        click.echo('✅  Database tables created.')

    @app.cli.command('patch-db')
    def patch_db():
        """Apply additive schema updates and backfill defaults."""
        from tillpoint.migration import run_auto_migration
        run_auto_migration(app)
        click.echo('✅ Schema patch complete.')

    @app.cli.command('seed-demo')
    def seed_demo():
        """Populate the local ledger with demo categories, products and VAT."""
        from decimal import Decimal
        from tillpoint.inventory.models import Category, Product, TaxRule

        click.echo("🌱 Seeding demo data...")
        db.create_all()

        if Category.query.count() == 0:
            db.session.add_all([
                Category(name='Food', description='Prepared meals and dishes', color='#f97316'),
                Category(name='Drinks', description='Beverages and refreshments', color='#3b82f6'),
            ])
            db.session.commit()
            click.echo("✅ Categories seeded.")

        if Product.query.count() == 0:
            demo = [
                ('Jollof Rice & Chicken', '45', 'Food', 50, 10, '1001'),
                ('Fried Rice & Fish',     '40', 'Food', 45, 10, '1002'),
                ('Banku & Tilapia',       '65', 'Food', 30, 10, '1003'),
                ('Waakye Special',        '35', 'Food', 60, 10, '1004'),
                ('Sobolo (500ml)',        '10', 'Drinks', 100, 20, '2001'),
                ('Coca Cola (300ml)',     '8',  'Drinks', 100, 20, '2002'),
                ('Alvaro',                '10', 'Drinks', 80, 20, '2003'),
                ('Pure Water',            '2',  'Drinks', 500, 50, '2004'),
            ]
            for name, price, category, stock, threshold, barcode in demo:
                db.session.add(Product(
                    name=name, price=Decimal(price), category=category,
                    stock=stock, low_stock_threshold=threshold, barcode=barcode,
                ))
            db.session.commit()
            click.echo("✅ Products seeded.")

        if TaxRule.query.count() == 0:
            db.session.add(TaxRule(name='VAT', rate=Decimal('0.15'), is_default=True))
            db.session.commit()
            click.echo("✅ Default VAT rule seeded (15%).")

        click.echo("✅ Demo seed complete.")

    @app.cli.command('sync-now')
    def sync_now():
        """Push unsynced products, orders and customers once."""
        from tillpoint.sync.client import SyncClient
        with SyncClient.from_config(app.config) as client:
            report = client.sync_all()
        for category in ('products', 'orders', 'customers'):
            result = getattr(report, category)
            if result is not None:
                click.echo(f'{category:<10} synced={result.get("synced", 0)}')
        for error in report.errors:
            click.echo(f'⚠️  {error}')

    @app.cli.command('sync-worker')
    def sync_worker():
        """Run the background sync scheduler in the foreground (Ctrl+C to stop)."""
        from tillpoint.sync.scheduler import SyncScheduler
        scheduler = SyncScheduler.from_app(app)
        click.echo(
            f'[sync] starting worker, interval={scheduler.interval}s, '
            f'remote={app.config["SYNC_REMOTE_URL"]}'
        )
        scheduler.start()
        try:
            scheduler.wait()
        except KeyboardInterrupt:
            click.echo('[sync] exiting on Ctrl+C')
        finally:
            scheduler.stop()

    @app.cli.command('sync-status')
    def sync_status():
        """Show record counts held by the remote sync store."""
        from tillpoint.sync.client import SyncClient, SyncError
        try:
            with SyncClient.from_config(app.config) as client:
                counts = client.remote_status()
        except SyncError as exc:
            click.echo(f'❌ {exc}')
            return
        click.echo(f'{"Products":<12} {counts.get("products", 0)}')
        click.echo(f'{"Orders":<12} {counts.get("orders", 0)}')
        click.echo(f'{"Customers":<12} {counts.get("customers", 0)}')

    return app
