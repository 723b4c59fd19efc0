"""
Prompt templates for the analysis agents.

Each agent has a user template and a formatter that renders it from the
agent's typed context. Specialized analysis modules inject an extra section
into the Collector, Analyst, Strategist and Critic prompts; under the general
module that section is omitted entirely, so generic prompts are unchanged.

Prompt Categories:
    1. Profile Synthesis
    2. Context Collection
    3. Metrics Analysis
    4. Suggestion Strategy
    5. Suggestion Review
    6. Lite Analysis / Lite Strategy
"""

import json
from datetime import date
from enum import Enum
from typing import Any, Callable

from store_insights.models.schemas import (
    AnalystContext,
    CollectorContext,
    CriticContext,
    KnowledgeDocument,
    LiteAnalystContext,
    LiteStrategistContext,
    ModuleConfig,
    PreviousSuggestion,
    ProfileContext,
    StrategistContext,
)


# =============================================================================
# Configuration
# =============================================================================

class PromptType(str, Enum):
    """Agent prompt types."""
    PROFILE = "profile"
    COLLECTOR = "collector"
    ANALYST = "analyst"
    STRATEGIST = "strategist"
    CRITIC = "critic"
    LITE_ANALYST = "lite_analyst"
    LITE_STRATEGIST = "lite_strategist"


MAX_PREVIOUS_SUGGESTIONS_IN_PROMPT = 30


# =============================================================================
# Templates
# =============================================================================

PROFILE_USER = """<task>
Build a concise profile of the online store "{store_name}" that the other analysts will use as shared context.
</task>

<store>
Name: {store_name}
URL: {store_url}
Platform: {platform}
Niche: {niche}
Subcategory: {subcategory}
</store>

<store_stats>
{store_stats}
</store_stats>

<niche_benchmarks>
{benchmarks}
</niche_benchmarks>

<structured_benchmarks>
{structured_benchmarks}
</structured_benchmarks>

<store_goals>
{store_goals}
</store_goals>

<rules>
1. Only describe what the data supports. Use "undetermined" when it does not.
2. Today is {today}. List seasonal events in the next 60 days that matter for this niche.
</rules>

<output_schema>
{{
  "store_profile": {{
    "name": "string",
    "url": "string",
    "platform": "string",
    "niche": "string",
    "detailed_niche": "string",
    "estimated_size": "small|medium|large|undetermined",
    "digital_maturity": "low|medium|high|undetermined",
    "target_audience": "string",
    "visible_differentiators": ["string"],
    "relevant_seasonality": "string"
  }},
  "analysis_context": {{
    "analysis_date": "YYYY-MM-DD",
    "upcoming_seasonal_events": ["string"],
    "initial_observations": "string"
  }}
}}
</output_schema>

Respond with JSON only."""


COLLECTOR_USER = """<task>
You are the context collector for an e-commerce analysis of "{store_name}" ({platform}, niche: {niche}, subcategory: {subcategory}).
Summarize history, benchmarks and gaps so the analyst and strategist do not repeat past work.
</task>

<store_profile>
{store_profile}
</store_profile>

<store_stats>
{store_stats}
</store_stats>

<store_goals>
{store_goals}
</store_goals>

<previous_analyses>
{previous_analyses}
</previous_analyses>

<previous_suggestions>
{previous_suggestions}
</previous_suggestions>

<niche_benchmarks>
{benchmarks}
</niche_benchmarks>

<structured_benchmarks>
{structured_benchmarks}
</structured_benchmarks>
{specialization}
<output_schema>
{{
  "historical_summary": ["string"],
  "success_patterns": ["string"],
  "suggestions_to_avoid": ["string"],
  "relevant_benchmarks": ["string"],
  "identified_gaps": ["string"],
  "data_not_available": ["string"],
  "special_context": "string"
}}
</output_schema>

Respond with JSON only."""


ANALYST_USER = """<task>
Analyze the last {period_days} days of "{store_name}" (niche: {niche}, subcategory: {subcategory}).
Every figure you report must come from the store data below.
</task>

<store_data>
{store_data}
</store_data>

<collector_context>
{collector_context}
</collector_context>

<niche_benchmarks>
{benchmarks}
</niche_benchmarks>

<structured_benchmarks>
{structured_benchmarks}
</structured_benchmarks>
{specialization}
<output_schema>
{{
  "metrics": {{
    "sales": {{"total": number, "daily_average": number, "trend": "growing|stable|declining", "previous_period_variation": number}},
    "average_order_value": {{"value": number, "benchmark": number, "percentage_difference": number}},
    "conversion": {{"rate": number, "benchmark": number}},
    "cancellation": {{"rate": number, "main_reasons": ["string"]}},
    "inventory": {{"out_of_stock_products": number, "critical_stock_products": number, "stagnant_inventory_value": number}},
    "coupons": {{"usage_rate": number, "ticket_impact": number}}
  }},
  "anomalies": [
    {{"type": "string", "description": "string", "severity": "high|medium|low", "metric": "string", "expected": "any", "actual": "any"}}
  ],
  "identified_patterns": [
    {{"type": "string", "description": "string", "opportunity": "string", "potential_revenue": "any"}}
  ],
  "overall_health": {{"score": 0-100, "classification": "critical|attention|healthy|excellent", "main_points": ["string"]}}
}}
</output_schema>

Respond with JSON only."""


STRATEGIST_USER = """<task>
Propose 9 improvement suggestions for "{store_name}" (niche: {niche}, subcategory: {subcategory}):
3 high impact, 3 medium impact and 3 low impact.
</task>

<analysis>
{analysis}
</analysis>

<collector_context>
{collector_context}
</collector_context>

<store_profile>
{store_profile}
</store_profile>

<proven_strategies>
{strategies}
</proven_strategies>

<previous_suggestions>
{previous_suggestions}
</previous_suggestions>

<saturated_themes>
{saturated_themes}
</saturated_themes>
{specialization}
<rules>
1. Cite the store's own numbers in every description and data_justification.
2. Do not repeat or rephrase a previous suggestion.
3. Do not propose anything about a saturated theme.
4. Titles must be specific and under 120 characters.
</rules>

<output_schema>
{{
  "suggestions": [
    {{
      "category": "string",
      "title": "string",
      "description": "string",
      "recommended_action": "string",
      "expected_impact": "high|medium|low",
      "target_metrics": ["string"],
      "specific_data": {{}},
      "data_justification": "string",
      "implementation_time": "immediate|1_week|1_month"
    }}
  ],
  "general_observations": "string"
}}
</output_schema>

Respond with JSON only."""


CRITIC_USER = """<task>
Review the candidate suggestions for "{store_name}" (niche: {niche}). Approve, rewrite or remove each one.
Keep at most 3 per impact level.
</task>

<candidate_suggestions>
{suggestions}
</candidate_suggestions>

<analysis>
{analysis}
</analysis>

<store_stats>
{store_stats}
</store_stats>

<previous_suggestions>
{previous_suggestions}
</previous_suggestions>
{specialization}
<review_criteria>
1. Remove suggestions that are generic, unsupported by the data, or duplicate a previous suggestion.
2. Correct numbers that do not match the analysis.
3. Score each approved suggestion from 0 to 10.
</review_criteria>

<output_schema>
{{
  "approved_suggestions": [
    {{
      "original": {{}},
      "final_version": {{
        "category": "string",
        "title": "string",
        "description": "string",
        "recommended_action": "string",
        "expected_impact": "high|medium|low",
        "target_metrics": ["string"],
        "specific_data": {{}},
        "data_justification": "string"
      }},
      "review": {{"quality_score": number, "final_priority": number, "changes": "string"}}
    }}
  ],
  "removed_suggestions": [{{"title": "string", "reason": "string"}}],
  "general_analysis": {{"total_received": number, "observations": "string"}}
}}
</output_schema>

Respond with JSON only."""


LITE_ANALYST_USER = """<task>
Quick health check of "{store_name}" (niche: {niche}) over the last {period_days} days.
</task>

<metrics>
{metrics}
</metrics>

<output_schema>
{{
  "metrics": {{
    "sales": {{"total": number, "daily_average": number, "trend": "growing|stable|declining"}},
    "average_order_value": {{"value": number, "benchmark": number}},
    "cancellation_rate": number,
    "inventory": {{"out_of_stock_products": number, "critical_stock_products": number}},
    "coupons": {{"usage_rate": number, "ticket_impact": number}}
  }},
  "anomalies": [{{"type": "string", "description": "string", "severity": "high|medium|low"}}],
  "overall_health": {{"score": 0-100, "classification": "critical|attention|healthy|excellent", "main_points": ["string"]}}
}}
</output_schema>

Respond with JSON only."""


LITE_STRATEGIST_USER = """<task>
Propose exactly 6 suggestions for "{store_name}" (niche: {niche}): 2 high, 2 medium and 2 low impact.
</task>

<metrics>
{metrics}
</metrics>

<analysis>
{analysis}
</analysis>

<avoid_titles>
{previous_titles}
</avoid_titles>

<output_schema>
{{
  "suggestions": [
    {{
      "category": "string",
      "title": "string",
      "description": "string",
      "recommended_action": "string",
      "expected_impact": "high|medium|low",
      "target_metrics": ["string"],
      "specific_data": {{}},
      "data_justification": "string"
    }}
  ]
}}
</output_schema>

Respond with JSON only."""


# =============================================================================
# Formatter Functions
# =============================================================================

def to_prompt_json(data: Any) -> str:
    """Render data as indented JSON for a prompt section."""
    if data in (None, {}, []):
        return "No data available"
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


def format_documents(documents: list[KnowledgeDocument]) -> str:
    if not documents:
        return "No specific knowledge available for this context."
    return "\n\n".join(f"### {doc.title}\n{doc.content}" for doc in documents)


def format_previous_suggestions(
    suggestions: list[PreviousSuggestion],
    limit: int = MAX_PREVIOUS_SUGGESTIONS_IN_PROMPT,
) -> str:
    if not suggestions:
        return "No previous suggestions"
    lines = [f"- [{s.status}] {s.title} ({s.category})" for s in suggestions[:limit]]
    if len(suggestions) > limit:
        lines.append(f"- ... and {len(suggestions) - limit} more")
    return "\n".join(lines)


def format_saturated_themes(themes: dict[str, int]) -> str:
    if not themes:
        return "None"
    return "\n".join(f"- {theme}: suggested {count} times" for theme, count in themes.items())


def _section(tag: str, lines: list[str]) -> str:
    body = "\n".join(line for line in lines if line)
    return f"\n<{tag}>\n{body}\n</{tag}>\n" if body else ""


def collector_specialization(config: ModuleConfig) -> str:
    if not config.is_specialized:
        return ""
    focus = config.collector_focus
    required = ", ".join(focus.get("required_metrics", []))
    return _section("analysis_focus", [
        f"Module: {config.analysis_type}",
        f"Priority data: {focus.get('priority_data', '')}" if focus.get("priority_data") else "",
        f"Required metrics: {required}" if required else "",
    ])


def analyst_specialization(config: ModuleConfig) -> str:
    if not config.is_specialized:
        return ""
    keywords = config.analyst_keywords
    return _section("analysis_focus", [
        f"Module: {config.analysis_type}",
        f"Keywords: {keywords.get('keywords', '')}" if keywords.get("keywords") else "",
        keywords.get("analysis_focus", ""),
    ])


def strategist_specialization(config: ModuleConfig, niche: str) -> str:
    if not config.is_specialized:
        return ""
    strategist = config.strategist_config
    good = strategist.get("good_example", "").replace("{niche}", niche)
    return _section("analysis_focus", [
        f"Module: {config.analysis_type}",
        f"Focus: {strategist.get('focus', '')}" if strategist.get("focus") else "",
        f"Good suggestion: {good}" if good else "",
        f"Bad suggestion: {strategist.get('bad_example', '')}" if strategist.get("bad_example") else "",
    ])


def critic_specialization(config: ModuleConfig) -> str:
    if not config.is_specialized:
        return ""
    return _section("extra_criteria", [config.critic_config.get("extra_criteria", "")])


def format_profile_prompt(context: ProfileContext) -> str:
    return PROFILE_USER.format(
        store_name=context.store_name,
        store_url=context.store_url or "N/A",
        platform=context.platform,
        niche=context.niche,
        subcategory=context.subcategory,
        store_stats=to_prompt_json(context.store_stats),
        benchmarks=format_documents(context.benchmarks),
        structured_benchmarks=to_prompt_json(context.structured_benchmarks),
        store_goals=to_prompt_json(context.store_goals),
        today=date.today().isoformat(),
    )


def format_collector_prompt(context: CollectorContext) -> str:
    return COLLECTOR_USER.format(
        store_name=context.store_name,
        platform=context.platform,
        niche=context.niche,
        subcategory=context.subcategory,
        store_profile=to_prompt_json(context.store_profile),
        store_stats=to_prompt_json(context.store_stats),
        store_goals=to_prompt_json(context.store_goals),
        previous_analyses=to_prompt_json(context.previous_analyses),
        previous_suggestions=format_previous_suggestions(context.previous_suggestions),
        benchmarks=format_documents(context.benchmarks),
        structured_benchmarks=to_prompt_json(context.structured_benchmarks),
        specialization=collector_specialization(context.module_config),
    )


def format_analyst_prompt(context: AnalystContext) -> str:
    period_days = (context.store_data.get("orders") or {}).get("period_days", "recent")
    return ANALYST_USER.format(
        store_name=context.store_name,
        niche=context.niche,
        subcategory=context.subcategory,
        period_days=period_days,
        store_data=to_prompt_json(context.store_data),
        collector_context=to_prompt_json(context.collector_context),
        benchmarks=format_documents(context.benchmarks),
        structured_benchmarks=to_prompt_json(context.structured_benchmarks),
        specialization=analyst_specialization(context.module_config),
    )


def format_strategist_prompt(context: StrategistContext) -> str:
    return STRATEGIST_USER.format(
        store_name=context.store_name,
        niche=context.niche,
        subcategory=context.subcategory,
        analysis=to_prompt_json(context.analysis),
        collector_context=to_prompt_json(context.collector_context),
        store_profile=to_prompt_json(context.store_profile),
        strategies=format_documents(context.strategies),
        previous_suggestions=format_previous_suggestions(context.previous_suggestions),
        saturated_themes=format_saturated_themes(context.saturated_themes),
        specialization=strategist_specialization(context.module_config, context.niche),
    )


def format_critic_prompt(context: CriticContext) -> str:
    return CRITIC_USER.format(
        store_name=context.store_name,
        niche=context.niche,
        suggestions=to_prompt_json(context.suggestions),
        analysis=to_prompt_json(context.analysis),
        store_stats=to_prompt_json(context.store_stats),
        previous_suggestions=format_previous_suggestions(context.previous_suggestions),
        specialization=critic_specialization(context.module_config),
    )


def format_lite_analyst_prompt(context: LiteAnalystContext) -> str:
    return LITE_ANALYST_USER.format(
        store_name=context.store_name,
        niche=context.niche,
        period_days=context.metrics.get("period_days", 7),
        metrics=to_prompt_json(context.metrics),
    )


def format_lite_strategist_prompt(context: LiteStrategistContext) -> str:
    titles = "\n".join(f"- {t}" for t in context.previous_titles) or "None"
    return LITE_STRATEGIST_USER.format(
        store_name=context.store_name,
        niche=context.niche,
        metrics=to_prompt_json(context.metrics),
        analysis=to_prompt_json(context.analysis),
        previous_titles=titles,
    )


# =============================================================================
# Prompt Registry
# =============================================================================

PROMPT_REGISTRY: dict[PromptType, Callable[[Any], str]] = {
    PromptType.PROFILE: format_profile_prompt,
    PromptType.COLLECTOR: format_collector_prompt,
    PromptType.ANALYST: format_analyst_prompt,
    PromptType.STRATEGIST: format_strategist_prompt,
    PromptType.CRITIC: format_critic_prompt,
    PromptType.LITE_ANALYST: format_lite_analyst_prompt,
    PromptType.LITE_STRATEGIST: format_lite_strategist_prompt,
}


def render_prompt(prompt_type: PromptType, context: Any) -> str:
    """
    Render the prompt for an agent.

    Raises:
        KeyError: If prompt type not found
    """
    try:
        key = PromptType(prompt_type)
    except ValueError:
        raise KeyError(f"Unknown prompt type: {prompt_type}") from None
    return PROMPT_REGISTRY[key](context)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "PromptType",
    "PROMPT_REGISTRY",
    "render_prompt",
    "to_prompt_json",
    "format_documents",
    "format_previous_suggestions",
    "format_saturated_themes",
]
