"""
tillpoint/main/dashboard.py
---------------------------
Dashboard KPIs over the order ledger. Every non-draft order counts,
so refunds and cancellations (negative totals) net against sales.
"""
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from tillpoint.billing.models import OrderStatus
from tillpoint.billing.pricing import format_money

ZERO = Decimal('0')


def _month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def _previous_month_start(moment: datetime) -> datetime:
    this_month = _month_start(moment)
    return _month_start(this_month - timedelta(days=1))


def percent_change(current: Decimal, previous: Decimal) -> Decimal:
    """0 when there is nothing to compare against."""
    if previous <= 0:
        return ZERO
    return (current - previous) / previous * Decimal('100')


def summarize_orders(orders: Iterable, now: Optional[datetime] = None) -> dict:
    now = now or datetime.utcnow()
    orders = [o for o in orders if o.status is not OrderStatus.draft]

    this_start = _month_start(now)
    last_start = _previous_month_start(now)

    def total(rows):
        return sum((Decimal(str(o.total)) for o in rows), start=ZERO)

    this_month = [o for o in orders if o.created_at >= this_start]
    last_month = [o for o in orders if last_start <= o.created_at < this_start]

    this_revenue, last_revenue = total(this_month), total(last_month)

    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    daily = []
    for offset in range(6, -1, -1):
        day_start = today - timedelta(days=offset)
        day_end = day_start + timedelta(days=1)
        day_total = total(o for o in orders if day_start <= o.created_at < day_end)
        daily.append({
            'date': day_start.date().isoformat(),
            'name': day_start.strftime('%a'),
            'total': format_money(day_total),
        })

    recent = sorted(orders, key=lambda o: (o.created_at, o.id), reverse=True)[:5]

    return {
        'total_revenue': format_money(total(orders)),
        'order_count': len(orders),
        'this_month_revenue': format_money(this_revenue),
        'last_month_revenue': format_money(last_revenue),
        'revenue_change': format_money(percent_change(this_revenue, last_revenue)),
        'this_month_orders': len(this_month),
        'last_month_orders': len(last_month),
        'order_change': format_money(percent_change(Decimal(len(this_month)), Decimal(len(last_month)))),
        'daily_revenue': daily,
        'recent_orders': [o.to_dict() for o in recent],
    }
