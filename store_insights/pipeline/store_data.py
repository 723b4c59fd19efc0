"""
Store metrics computed from a snapshot.

Produces the three payloads the agents read: lifetime store stats, the full
period metrics for the Analyst and the compact metrics for the lite
pipeline. All windows start at midnight ``period_days`` days ago.
"""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import datetime, time, timedelta, timezone
from typing import Any, Iterable, Optional

from store_insights.models.schemas import OrderRecord, ProductRecord, StoreSnapshot

EXCESS_STOCK_QUANTITY = 100
BEST_SELLERS_LIMIT = 10
LITE_BEST_SELLERS_LIMIT = 20
OUT_OF_STOCK_LIST_LIMIT = 10
MOST_USED_COUPONS_LIMIT = 5


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def period_start(period_days: int, now: Optional[datetime] = None) -> datetime:
    now = _naive_utc(now or datetime.utcnow())
    return datetime.combine((now - timedelta(days=period_days)).date(), time.min)


def orders_in_period(store: StoreSnapshot, period_days: int, now: Optional[datetime] = None) -> list[OrderRecord]:
    start = period_start(period_days, now)
    return [o for o in store.orders if _naive_utc(o.created_at) >= start]


def _average(values: list[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def cancellation_rate(orders: list[OrderRecord]) -> float:
    if not orders:
        return 0
    cancelled = sum(1 for o in orders if o.is_cancelled)
    return round(cancelled / len(orders) * 100, 2)


# =============================================================================
# Products
# =============================================================================

def _units_sold(paid_orders: Iterable[OrderRecord], priced_only: bool) -> dict[str, dict[str, float]]:
    stats: dict[str, dict[str, float]] = defaultdict(lambda: {"quantity": 0, "revenue": 0.0})
    for order in paid_orders:
        for item in order.items:
            if not item.product_id:
                continue
            if priced_only and item.unit_price <= 0:
                continue
            stats[item.product_id]["quantity"] += item.quantity
            stats[item.product_id]["revenue"] += item.unit_price * item.quantity
    return stats


def best_sellers(
    products: list[ProductRecord],
    paid_orders: list[OrderRecord],
    limit: int = BEST_SELLERS_LIMIT,
) -> list[dict[str, Any]]:
    """Top products by units sold, with catalog details."""
    stats = _units_sold(paid_orders, priced_only=True)
    ranked = sorted(stats.items(), key=lambda kv: kv[1]["quantity"], reverse=True)[:limit]
    catalog = {p.id: p for p in products}

    result = []
    for product_id, sold in ranked:
        product = catalog.get(product_id)
        if product is None:
            continue
        result.append({
            "id": product_id,
            "name": product.name,
            "quantity_sold": sold["quantity"],
            "revenue": round(sold["revenue"], 2),
            "current_stock": product.stock_quantity or 0,
            "price": product.price,
        })
    return result


def out_of_stock_products(products: list[ProductRecord], limit: int = OUT_OF_STOCK_LIST_LIMIT) -> list[dict[str, Any]]:
    return [
        {"id": p.id, "name": p.name, "price": p.price}
        for p in products
        if p.is_out_of_stock
    ][:limit]


def no_sales_count(products: list[ProductRecord], period_orders: list[OrderRecord]) -> int:
    """Active, in-stock products that sold nothing in the period."""
    sold = {item.product_id for o in period_orders for item in o.items if item.product_id}
    return sum(
        1 for p in products
        if p.is_active and (p.stock_quantity or 0) > 0 and p.id not in sold
    )


# =============================================================================
# Coupons
# =============================================================================

def coupon_ticket_impact(paid_orders: list[OrderRecord]) -> tuple[float, list[OrderRecord]]:
    """Percentage difference of average ticket with versus without a coupon."""
    with_coupon = [o for o in paid_orders if o.coupon_code]
    without_coupon = [o for o in paid_orders if not o.coupon_code]
    avg_with = _average([o.total for o in with_coupon])
    avg_without = _average([o.total for o in without_coupon])
    impact = round((avg_with - avg_without) / avg_without * 100, 2) if avg_without > 0 else 0
    return impact, with_coupon


def coupon_usage_rate(paid_orders: list[OrderRecord], with_coupon: list[OrderRecord]) -> float:
    if not paid_orders:
        return 0
    return round(len(with_coupon) / len(paid_orders) * 100, 2)


def coupons_data(store: StoreSnapshot, paid_orders: list[OrderRecord], now: Optional[datetime] = None) -> dict[str, Any]:
    ticket_impact, with_coupon = coupon_ticket_impact(paid_orders)

    usage: dict[str, dict[str, Any]] = {}
    total_discount = 0.0
    for order in with_coupon:
        entry = usage.setdefault(
            order.coupon_code,
            {"code": order.coupon_code, "times_used": 0, "total_discount": 0.0, "orders_value": 0.0},
        )
        entry["times_used"] += 1
        entry["total_discount"] += order.discount
        entry["orders_value"] += order.total
        total_discount += order.discount

    most_used = sorted(usage.values(), key=lambda c: c["times_used"], reverse=True)
    return {
        "registered_total": len(store.coupons),
        "registered_active": sum(1 for c in store.coupons if c.is_active and not c.is_expired(now)),
        "registered_expired": sum(1 for c in store.coupons if c.is_expired(now)),
        "period_orders_with_coupon": len(with_coupon),
        "period_orders_total": len(paid_orders),
        "usage_rate_percent": coupon_usage_rate(paid_orders, with_coupon),
        "total_discount_given": round(total_discount, 2),
        "average_discount_per_order": round(total_discount / len(with_coupon), 2) if with_coupon else 0,
        "ticket_impact_percent": ticket_impact,
        "most_used_coupons": most_used[:MOST_USED_COUPONS_LIMIT],
    }


# =============================================================================
# Customers and Trends
# =============================================================================

def repeat_purchase_rate(orders: list[OrderRecord]) -> float:
    """Percent of paying customers with more than one paid order."""
    counts = Counter(o.customer_id for o in orders if o.is_paid and o.customer_id)
    if not counts:
        return 0
    repeat = sum(1 for n in counts.values() if n > 1)
    return round(repeat / len(counts) * 100, 2)


def change_percent(current: float, previous: float) -> float:
    if previous == 0:
        return 100.0 if current > 0 else 0.0
    return round((current - previous) / previous * 100, 1)


def trend_label(change: float) -> str:
    if change > 20:
        return "strong_growth"
    if change > 5:
        return "growth"
    if change > -5:
        return "stable"
    if change > -20:
        return "decline"
    return "strong_decline"


def revenue_trend(store: StoreSnapshot, period_days: int, now: Optional[datetime] = None) -> dict[str, Any]:
    """Paid revenue in the period against the equally long period before it."""
    start = period_start(period_days, now)
    previous_start = start - timedelta(days=period_days)
    current = previous = 0.0
    for order in store.orders:
        if not order.is_paid:
            continue
        created = _naive_utc(order.created_at)
        if created >= start:
            current += order.total
        elif created >= previous_start:
            previous += order.total
    change = change_percent(current, previous)
    return {
        "revenue_current": round(current, 2),
        "revenue_previous": round(previous, 2),
        "revenue_change_percent": change,
        "revenue_trend": trend_label(change),
    }


# =============================================================================
# Payloads
# =============================================================================

def get_store_stats(store: StoreSnapshot, recent_days: int = 15, now: Optional[datetime] = None) -> dict[str, Any]:
    """Lifetime totals for the profile and collector prompts."""
    first_order = min((_naive_utc(o.created_at) for o in store.orders), default=None)
    reference = _naive_utc(now or datetime.utcnow())
    customers = {o.customer_id for o in store.orders if o.customer_id}
    return {
        "operation_time": (
            f"{(reference - first_order).days} days (first order {first_order.date().isoformat()})"
            if first_order else "unknown"
        ),
        "total_orders": len(store.orders),
        "total_customers": len(customers),
        "total_products": len(store.products),
        "active_products": sum(1 for p in store.products if p.is_active),
        f"recent_orders_{recent_days}d": len(orders_in_period(store, recent_days, now)),
        "total_revenue": round(sum(o.total for o in store.orders if o.is_paid), 2),
    }


def prepare_store_data(store: StoreSnapshot, period_days: int = 15, now: Optional[datetime] = None) -> dict[str, Any]:
    """Period metrics for the Analyst."""
    orders = orders_in_period(store, period_days, now)
    paid = [o for o in orders if o.is_paid]
    products = store.products

    return {
        "orders": {
            "total": len(orders),
            "period_days": period_days,
            "by_payment_status": dict(Counter(o.payment_status or "unknown" for o in orders)),
            "total_revenue": round(sum(o.total for o in paid), 2),
            "average_order_value": round(_average([o.total for o in paid]), 2),
            "by_day": dict(sorted(Counter(_naive_utc(o.created_at).date().isoformat() for o in orders).items())),
            "cancellation_rate": cancellation_rate(orders),
        },
        "products": {
            "total": len(products),
            "active": sum(1 for p in products if p.is_active),
            "out_of_stock": sum(1 for p in products if p.is_out_of_stock),
            "out_of_stock_list": out_of_stock_products(products),
            "best_sellers": best_sellers(products, paid),
            "no_sales_period": no_sales_count(products, orders),
        },
        "inventory": {
            "total_value": round(sum((p.stock_quantity or 0) * (p.cost or 0) for p in products), 2),
            "low_stock_products": sum(1 for p in products if p.has_low_stock),
            "excess_stock_products": sum(1 for p in products if (p.stock_quantity or 0) > EXCESS_STOCK_QUANTITY),
        },
        "coupons": coupons_data(store, paid, now),
        "customers": {
            "total": len({o.customer_id for o in store.orders if o.customer_id}),
            "repeat_purchase_rate": repeat_purchase_rate(store.orders),
        },
        "trends": revenue_trend(store, period_days, now),
    }


def prepare_compact_data(store: StoreSnapshot, period_days: int = 7, now: Optional[datetime] = None) -> dict[str, Any]:
    """Compact metrics for the lite pipeline."""
    orders = orders_in_period(store, period_days, now)
    paid = [o for o in orders if o.is_paid]
    products = store.products
    ticket_impact, with_coupon = coupon_ticket_impact(paid)
    sold = _units_sold(paid, priced_only=False)

    return {
        "period_days": period_days,
        "orders": {
            "total": len(orders),
            "total_revenue": round(sum(o.total for o in paid), 2),
            "average_order_value": round(_average([o.total for o in paid]), 2),
            "cancellation_rate": cancellation_rate(orders),
        },
        "products": {
            "total": len(products),
            "active": sum(1 for p in products if p.is_active),
            "out_of_stock": sum(1 for p in products if p.is_out_of_stock),
            "low_stock": sum(1 for p in products if p.has_low_stock),
            "best_sellers_count": min(len(sold), LITE_BEST_SELLERS_LIMIT),
        },
        "coupons": {
            "usage_rate": coupon_usage_rate(paid, with_coupon),
            "ticket_impact": ticket_impact,
            "total_discount": round(sum(o.discount for o in with_coupon), 2),
        },
    }


__all__ = [
    "get_store_stats",
    "prepare_store_data",
    "prepare_compact_data",
    "orders_in_period",
    "period_start",
    "best_sellers",
    "coupons_data",
    "cancellation_rate",
]
