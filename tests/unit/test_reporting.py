from store_insights.pipeline.reporting import (
    alert_label,
    build_summary,
    extract_alerts,
    extract_lite_alerts,
    extract_opportunities,
    opportunity_label,
)


def test_build_summary(analyst_reply):
    summary = build_summary(analyst_reply)
    assert summary.health_score == 72
    assert summary.health_status == "healthy"
    assert summary.main_insight == "Sales are growing"
    assert summary.pipeline == "full"


def test_build_summary_defaults():
    summary = build_summary({}, pipeline="lite", default_insight="Lite analysis completed")
    assert summary.health_score == 50
    assert summary.health_status == "attention"
    assert summary.main_insight == "Lite analysis completed"
    assert summary.pipeline == "lite"


def test_build_summary_keeps_zero_score():
    assert build_summary({"overall_health": {"score": 0}}).health_score == 0


def test_labels_fall_back_to_title_case():
    assert alert_label("critical_stock") == "Critical Stock"
    assert alert_label("weird_thing") == "Weird Thing"
    assert opportunity_label("cross_sell") == "Cross-Sell Opportunity"
    assert opportunity_label("foo_bar") == "Foo Bar"


def test_extract_alerts_keeps_three_most_severe():
    metrics = {
        "anomalies": [
            {"type": "refund_rate", "description": "low one", "severity": "low"},
            {"type": "stock_out", "description": "high one", "severity": "high"},
            {"type": "order_decline", "description": "medium one", "severity": "medium"},
            {"type": "weird_thing", "description": "unrated"},
            "not a dict",
        ]
    }
    alerts = extract_alerts(metrics)
    assert [a.message for a in alerts] == ["high one", "medium one", "unrated"]
    assert [a.type for a in alerts] == ["danger", "warning", "warning"]
    assert alerts[0].title == "Stock Out"
    assert alerts[2].title == "Weird Thing"


def test_extract_lite_alerts_maps_every_severity():
    metrics = {
        "anomalies": [
            {"type": "stock_out", "description": "a", "severity": "high"},
            {"type": "order_decline", "description": "b", "severity": "medium"},
            {"type": "refund_rate", "description": "c", "severity": "low"},
            {"type": "alert", "description": "d"},
        ]
    }
    assert [a.type for a in extract_lite_alerts(metrics)] == ["danger", "warning", "info", "info"]


def test_extract_opportunities(analyst_reply):
    analyst_reply["identified_patterns"].append({"type": "upsell", "title": "Premium line", "opportunity": "Sell more"})
    analyst_reply["identified_patterns"].append(None)
    first, second = extract_opportunities(analyst_reply)

    assert first.title == "Cross-Sell Opportunity"
    assert first.description == "Dresses sell with tees"
    assert first.type == "cross_sell"
    assert first.potential_revenue == 1200
    assert second.title == "Premium line"
    assert second.description == "Sell more"
    assert extract_opportunities({}) == []
