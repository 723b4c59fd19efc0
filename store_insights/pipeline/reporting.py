"""Analysis summary, alerts and opportunities derived from Analyst output."""

from typing import Any

from store_insights.models.schemas import Alert, AnalysisSummary, Opportunity

SEVERITY_ORDER = {"high": 1, "medium": 2, "low": 3}
MAX_FULL_ALERTS = 3

ALERT_LABELS = {
    "inventory_management": "Inventory Management",
    "sales_performance": "Sales Performance",
    "pricing_strategy": "Pricing Strategy",
    "customer_behavior": "Customer Behavior",
    "order_management": "Order Management",
    "sales_concentration": "Sales Concentration",
    "critical_stock": "Critical Stock",
    "recent_sales_drop": "Recent Sales Drop",
    "excessive_coupons": "Excessive Coupons",
    "coupon_dependency": "Coupon Dependency",
    "star_products": "Star Products",
    "cancellation_rate": "Cancellation Rate",
    "refund_rate": "Refund Rate",
    "inventory_critical": "Critical Inventory",
    "low_conversion": "Low Conversion",
    "high_abandonment": "High Cart Abandonment",
    "revenue_decline": "Revenue Decline",
    "order_decline": "Order Decline",
    "ticket_decline": "Average Ticket Decline",
    "customer_churn": "Customer Churn",
    "stock_out": "Stock Out",
    "alert": "Alert",
}

OPPORTUNITY_LABELS = {
    "coupon_dependency": "Reduce Coupon Dependency",
    "bestseller_dominance": "Diversify Beyond Best Sellers",
    "inventory_imbalance": "Rebalance Inventory",
    "cross_sell": "Cross-Sell Opportunity",
    "upsell": "Upsell Opportunity",
    "seasonal_trend": "Seasonal Trend",
    "customer_retention": "Customer Retention",
    "price_optimization": "Price Optimization",
    "bundle_opportunity": "Bundle Opportunity",
    "reactivation": "Customer Reactivation",
    "high_margin": "High Margin Products",
    "growth_potential": "Growth Potential",
    "market_expansion": "Market Expansion",
    "repeat_purchase": "Repeat Purchase",
    "opportunity": "Opportunity",
}


def _humanize(key: str) -> str:
    return key.replace("_", " ").title()


def alert_label(key: str) -> str:
    return ALERT_LABELS.get(key) or _humanize(key or "alert")


def opportunity_label(key: str) -> str:
    return OPPORTUNITY_LABELS.get(key) or _humanize(key or "opportunity")


def build_summary(
    metrics: dict[str, Any],
    pipeline: str = "full",
    default_insight: str = "Analysis completed successfully",
) -> AnalysisSummary:
    health = metrics.get("overall_health") or {}
    main_points = health.get("main_points") or []
    score = health.get("score")
    return AnalysisSummary(
        health_score=score if score is not None else 50,
        health_status=health.get("classification") or "attention",
        main_insight=main_points[0] if main_points else default_insight,
        pipeline=pipeline,
    )


def _anomalies(metrics: dict[str, Any]) -> list[dict[str, Any]]:
    anomalies = metrics.get("anomalies") or []
    return [a for a in anomalies if isinstance(a, dict)]


def extract_alerts(metrics: dict[str, Any]) -> list[Alert]:
    """The three most severe anomalies, as danger or warning alerts."""
    ranked = sorted(
        _anomalies(metrics),
        key=lambda a: SEVERITY_ORDER.get(a.get("severity") or "medium", SEVERITY_ORDER["medium"]),
    )
    return [
        Alert(
            type="danger" if anomaly.get("severity") == "high" else "warning",
            title=alert_label(anomaly.get("type") or "alert"),
            message=anomaly.get("description") or "",
        )
        for anomaly in ranked[:MAX_FULL_ALERTS]
    ]


def extract_lite_alerts(metrics: dict[str, Any]) -> list[Alert]:
    """Every anomaly, mapped high to danger, medium to warning, else info."""
    types = {"high": "danger", "medium": "warning"}
    return [
        Alert(
            type=types.get(anomaly.get("severity"), "info"),
            title=alert_label(anomaly.get("type") or "alert"),
            message=anomaly.get("description") or "",
        )
        for anomaly in _anomalies(metrics)
    ]


def extract_opportunities(metrics: dict[str, Any]) -> list[Opportunity]:
    patterns = metrics.get("identified_patterns") or []
    opportunities = []
    for pattern in patterns:
        if not isinstance(pattern, dict):
            continue
        kind = pattern.get("type") or "opportunity"
        opportunities.append(Opportunity(
            title=pattern.get("title") or opportunity_label(kind),
            description=pattern.get("description") or pattern.get("opportunity") or "",
            type=kind,
            potential_revenue=pattern.get("potential_revenue"),
        ))
    return opportunities


__all__ = [
    "ALERT_LABELS",
    "OPPORTUNITY_LABELS",
    "alert_label",
    "opportunity_label",
    "build_summary",
    "extract_alerts",
    "extract_lite_alerts",
    "extract_opportunities",
]
