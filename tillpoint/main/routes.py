"""
tillpoint/main/routes.py
------------------------
Dashboard, alert feed and health check.
"""
from datetime import datetime

from flask import jsonify, current_app
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from tillpoint import db
from tillpoint.main import main
from tillpoint.main.dashboard import summarize_orders


@main.route("/health")
def health():
    """Health check for load balancers and monitoring."""
    status = "ok"
    failures = []

    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        status = "error"
        failures.append(f"DB: {e}")
        current_app.logger.error(f"Health check failed (DB): {e}")

    response = {
        "status": status,
        "timestamp": datetime.utcnow().isoformat(),
        "details": {"db": "ok" if status == "ok" else "error"},
    }
    if failures:
        response["failures"] = failures
    return jsonify(response), 200 if status == "ok" else 500


@main.route('/')
def index():
    """Dashboard KPIs."""
    from tillpoint.billing.models import Order, OrderStatus
    from tillpoint.customers.models import Customer
    from tillpoint.inventory.models import Product

    orders = Order.query.filter(Order.status != OrderStatus.draft).all()
    summary = summarize_orders(orders)

    # ── Inventory stats ───────────────────────────────────────────
    summary['active_products'] = Product.query.filter(Product.is_active.is_(True)).count()
    summary['low_stock_count'] = Product.query.filter(
        Product.is_active.is_(True),
        Product.stock <= Product.low_stock_threshold,
    ).count()
    summary['customer_count'] = Customer.query.count()
    return jsonify(summary)


@main.route('/alerts')
def alerts():
    from tillpoint.alerts.deriver import alert_feed

    current = alert_feed.current()
    return jsonify({
        'alerts': [a.to_dict() for a in current],
        'count': len(current),
        'danger_count': sum(1 for a in current if a.severity == 'danger'),
    })
