import json

import pytest

from store_insights.models.schemas import (
    Alert,
    AnalysisRecord,
    AnalysisSummary,
    Opportunity,
    PipelineResult,
    SuggestionRecord,
)
from store_insights.utils.formatters import (
    format_suggestions_table,
    generate_analysis_report,
    save_report,
)


@pytest.fixture
def result():
    return PipelineResult(
        analysis_id="analysis-1",
        overall_health={"score": 72, "classification": "healthy", "main_points": ["Sales are growing"]},
        suggestions_count=2,
        niche="fashion",
    )


@pytest.fixture
def suggestions():
    return [
        SuggestionRecord(
            analysis_id="analysis-1", store_id=7, category="inventory", title="Restock the denim jacket",
            description="Only 3 units left", expected_impact="high", priority=2,
        ),
        SuggestionRecord(
            analysis_id="analysis-1", store_id=7, category="conversion", title="Bundle | dresses",
            description="Pair dresses with tees", recommended_action="Create a bundle",
            expected_impact="medium", priority=1, target_metrics=["average_order_value"],
        ),
    ]


def test_suggestions_table(suggestions):
    table = format_suggestions_table(suggestions)
    lines = table.splitlines()
    assert lines[0] == "| Priority | Suggestion | Category | Impact |"
    assert lines[2].startswith("| 1 | Bundle - dresses | conversion |")
    assert lines[3].startswith("| 2 | Restock the denim jacket |")
    assert format_suggestions_table([]) == "*No suggestions were generated.*"


def test_report_uses_persisted_analysis(result, suggestions):
    analysis = AnalysisRecord(
        analysis_id="analysis-1",
        store_id=7,
        status="completed",
        summary=AnalysisSummary(health_score=80, health_status="healthy", main_insight="Ticket is up"),
        alerts=[Alert(type="danger", title="Critical Stock", message="3 units left")],
        opportunities=[Opportunity(title="Cross-Sell Opportunity", description="Dresses with tees", type="cross_sell")],
    )
    report = generate_analysis_report(result, "Bella Moda", analysis, suggestions)

    assert report.startswith("# Store Analysis Report: Bella Moda")
    for section in ("## Overview", "## Main Insight", "## Alerts", "## Opportunities", "## Suggestions"):
        assert section in report
    assert "| Health Score | 80 |" in report
    assert "Ticket is up" in report
    assert "**Critical Stock**: 3 units left" in report
    assert "**Recommended action:** Create a bundle" in report
    assert "Analysis ID: analysis-1" in report


def test_report_without_analysis_falls_back_to_result(result):
    report = generate_analysis_report(result, "Bella Moda")
    assert "| Health Score | 72 |" in report
    assert "Sales are growing" in report
    assert "*No alerts.*" in report
    assert "*No opportunities identified.*" in report


def test_save_report(tmp_path):
    markdown = save_report("# Title", tmp_path / "out" / "report.txt")
    assert markdown.name == "report.md"
    assert markdown.read_text(encoding="utf-8") == "# Title"

    saved = save_report('{"a": 1}', tmp_path / "report", format="json")
    assert json.loads(saved.read_text(encoding="utf-8")) == {"a": 1}

    with pytest.raises(ValueError):
        save_report("x", tmp_path / "report", format="pdf")
