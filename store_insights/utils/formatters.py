"""
Report formatting utilities.

Renders a pipeline result together with its persisted analysis and
suggestions as a Markdown (or JSON) report.
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from store_insights.models.schemas import AnalysisRecord, PipelineResult, SuggestionRecord

logger = logging.getLogger(__name__)

IMPACT_ICONS = {"high": "🔴", "medium": "🟡", "low": "🟢"}
ALERT_ICONS = {"danger": "🚨", "warning": "⚠️", "info": "ℹ️"}


def _cell(value: object) -> str:
    return str(value if value is not None else "-").replace("|", "-").replace("\n", " ")


def format_health_table(result: PipelineResult, analysis: Optional[AnalysisRecord]) -> str:
    """
    Create formatted markdown table for the store's health.

    | Metric | Value |
    |--------|-------|
    | Health Score | 72 |
    | Status | healthy |
    """
    summary = analysis.summary if analysis else None
    score = summary.health_score if summary else result.overall_health.get("score", "-")
    status = summary.health_status if summary else result.overall_health.get("classification", "-")

    rows = [
        f"| Health Score | {_cell(score)} |",
        f"| Status | {_cell(status)} |",
        f"| Niche | {_cell(result.niche)} |",
        f"| Pipeline | {_cell(result.pipeline)} |",
        f"| Suggestions | {result.suggestions_count} |",
    ]
    header = "| Metric | Value |\n|--------|-------|"
    return header + "\n" + "\n".join(rows)


def format_suggestions_table(suggestions: List[SuggestionRecord]) -> str:
    """
    Create formatted markdown table for persisted suggestions.

    | Priority | Suggestion | Category | Impact |
    |----------|------------|----------|--------|
    """
    if not suggestions:
        return "*No suggestions were generated.*"

    header = "| Priority | Suggestion | Category | Impact |\n|----------|------------|----------|--------|"
    rows = []
    for suggestion in sorted(suggestions, key=lambda s: s.priority):
        title = suggestion.title[:70] + "..." if len(suggestion.title) > 70 else suggestion.title
        impact = f"{IMPACT_ICONS.get(suggestion.expected_impact, '')} {suggestion.expected_impact}".strip()
        rows.append(
            f"| {suggestion.priority} | {_cell(title)} | {_cell(suggestion.category)} | {impact} |"
        )
    return header + "\n" + "\n".join(rows)


def format_suggestion_details(suggestions: List[SuggestionRecord]) -> str:
    blocks = []
    for suggestion in sorted(suggestions, key=lambda s: s.priority):
        block = f"### {suggestion.priority}. {suggestion.title}\n\n{suggestion.description}"
        if suggestion.recommended_action:
            block += f"\n\n**Recommended action:** {suggestion.recommended_action}"
        if suggestion.data_justification:
            block += f"\n\n**Why:** {suggestion.data_justification}"
        if suggestion.target_metrics:
            block += "\n\n**Target metrics:** " + ", ".join(suggestion.target_metrics)
        blocks.append(block)
    return "\n\n".join(blocks)


def generate_analysis_report(
    result: PipelineResult,
    store_name: str,
    analysis: Optional[AnalysisRecord] = None,
    suggestions: Optional[List[SuggestionRecord]] = None,
) -> str:
    """
    Generate the complete Markdown report.

    Structure:
    # Store Analysis Report: {store_name}
    ## Overview
    ## Main Insight
    ## Alerts
    ## Opportunities
    ## Suggestions
    ## Suggestion Details
    """
    timestamp = datetime.utcnow().strftime("%Y-%m-%d %H:%M UTC")
    suggestions = suggestions or []

    main_insight = analysis.summary.main_insight if analysis and analysis.summary else ""
    if not main_insight:
        points = result.overall_health.get("main_points") or []
        main_insight = points[0] if points else "No insight available."

    alerts = analysis.alerts if analysis else []
    alerts_text = "\n".join(
        f"- {ALERT_ICONS.get(a.type, '•')} **{a.title}**: {a.message}" for a in alerts
    ) or "*No alerts.*"

    opportunities = analysis.opportunities if analysis else []
    opportunities_text = "\n".join(
        f"- **{o.title}**: {o.description}" for o in opportunities
    ) or "*No opportunities identified.*"

    return f"""# Store Analysis Report: {store_name}

## Overview
{format_health_table(result, analysis)}

## Main Insight
{main_insight}

## Alerts
{alerts_text}

## Opportunities
{opportunities_text}

## Suggestions
{format_suggestions_table(suggestions)}

## Suggestion Details
{format_suggestion_details(suggestions) or "*None.*"}

---
Analysis ID: {result.analysis_id}
Generated on: {timestamp}
"""


def save_report(report: str, output_path: Path, format: str = "markdown") -> Path:
    """
    Save report content to file.

    Args:
        report: Markdown content, or JSON text for ``format="json"``
        output_path: Destination path (extension is replaced)
        format: 'markdown' or 'json'
    """
    output_path.parent.mkdir(parents=True, exist_ok=True)
    base_path = output_path.with_suffix("")

    if format == "markdown":
        file_path = base_path.with_suffix(".md")
    elif format == "json":
        file_path = base_path.with_suffix(".json")
        report = json.dumps(json.loads(report), indent=2, ensure_ascii=False)
    else:
        raise ValueError(f"Unsupported format: {format}")

    file_path.write_text(report, encoding="utf-8")
    logger.info(f"Saved {format} report to {file_path}")
    return file_path


__all__ = [
    "format_health_table",
    "format_suggestions_table",
    "format_suggestion_details",
    "generate_analysis_report",
    "save_report",
]
