"""
Critic agent.

Reviews Strategist candidates and returns the approved set, rebalanced to at
most three suggestions per impact level with priorities renumbered from 1.

Features:
    - Falls back to the reviewer's copy of the original when no final version
      is given
    - Reads quality scores from any of the places reviewers put them
    - Always reports ``general_analysis`` totals, even when the reply omits them
"""

from typing import Any

from store_insights.agents.base import BaseAgent
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import CriticContext, ExpectedImpact, as_text
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)

TARGET_PER_IMPACT = 3
DEFAULT_QUALITY_SCORE = 5.0


def normalize_final_version(suggestion: dict[str, Any]) -> dict[str, Any]:
    specific_data = suggestion.get("specific_data")
    target_metrics = suggestion.get("target_metrics")
    return {
        "category": as_text(suggestion.get("category")) or "general",
        "title": str(suggestion.get("title") or "")[:255],
        "description": as_text(suggestion.get("description")),
        "recommended_action": as_text(suggestion.get("recommended_action")),
        "expected_impact": ExpectedImpact.parse(
            suggestion.get("expected_impact"), default=ExpectedImpact.MEDIUM
        ).value,
        "target_metrics": target_metrics if target_metrics is not None else [],
        "specific_data": specific_data if isinstance(specific_data, dict) else {},
        "data_justification": as_text(suggestion.get("data_justification")),
    }


def average_quality(suggestions: list[dict[str, Any]]) -> float:
    if not suggestions:
        return 0
    return round(sum(s["quality_score"] for s in suggestions) / len(suggestions), 1)


def _with_impact(item: dict[str, Any], impact: ExpectedImpact) -> dict[str, Any]:
    final_version = {**item["final_version"], "expected_impact": impact.value}
    return {**item, "final_version": final_version}


def rebalance(suggestions: list[dict[str, Any]], target: int = TARGET_PER_IMPACT) -> list[dict[str, Any]]:
    """
    Move surplus suggestions between impact levels, then keep at most
    ``target`` of each, ordered high, medium, low.
    """
    high: list[dict[str, Any]] = []
    medium: list[dict[str, Any]] = []
    low: list[dict[str, Any]] = []
    for item in suggestions:
        impact = item["final_version"]["expected_impact"]
        if impact == ExpectedImpact.HIGH.value:
            high.append(item)
        elif impact == ExpectedImpact.LOW.value:
            low.append(item)
        else:
            medium.append(item)

    while len(high) > target and (len(medium) < target or len(low) < target):
        item = high.pop()
        if len(medium) < target:
            medium.append(_with_impact(item, ExpectedImpact.MEDIUM))
        else:
            low.append(_with_impact(item, ExpectedImpact.LOW))

    while len(medium) > target and len(low) < target:
        low.append(_with_impact(medium.pop(), ExpectedImpact.LOW))

    while len(high) < target and len(medium) > target:
        high.append(_with_impact(medium.pop(0), ExpectedImpact.HIGH))

    while len(medium) < target and len(low) > target:
        medium.append(_with_impact(low.pop(0), ExpectedImpact.MEDIUM))

    result = high[:target] + medium[:target] + low[:target]
    return [{**item, "final_priority": position} for position, item in enumerate(result, 1)]


class CriticAgent(BaseAgent):
    name = "critic"
    prompt_type = PromptType.CRITIC
    context_model = CriticContext
    temperature = 0.3
    max_tokens = 32768

    def default_response(self, context: CriticContext) -> dict[str, Any]:
        return {
            "approved_suggestions": [],
            "removed_suggestions": [],
            "general_analysis": {
                "total_received": 0,
                "total_approved": 0,
                "total_removed": 0,
                "average_quality": 0,
                "observations": "Could not parse critic response",
            },
        }

    def normalize(self, data: dict[str, Any], context: CriticContext) -> dict[str, Any]:
        raw = data.get("approved_suggestions")
        raw = raw if isinstance(raw, list) else []
        removed = data.get("removed_suggestions")
        removed = removed if isinstance(removed, list) else []

        approved = []
        for index, item in enumerate(raw):
            if not isinstance(item, dict):
                continue
            final_version = item.get("final_version") or item.get("original")
            if not isinstance(final_version, dict) or not final_version:
                logger.warning(
                    "Approved suggestion without content skipped",
                    index=index,
                    has_final_version="final_version" in item,
                    has_original="original" in item,
                )
                continue

            review = item.get("review") if isinstance(item.get("review"), dict) else {}
            quality = _first_present(
                review.get("quality_score"), item.get("quality_score"), review.get("score")
            )
            priority = _first_present(review.get("final_priority"), item.get("final_priority"))
            original = item.get("original")
            approved.append({
                "original": original if isinstance(original, dict) else {},
                "final_version": normalize_final_version(final_version),
                "quality_score": _to_float(quality, DEFAULT_QUALITY_SCORE),
                "final_priority": _to_int(priority, index + 1),
            })

        general_analysis = {
            "total_received": 0,
            "total_approved": len(approved),
            "total_removed": len(removed),
            "average_quality": average_quality(approved),
            "observations": "",
        }
        if isinstance(data.get("general_analysis"), dict):
            general_analysis.update(data["general_analysis"])

        balanced = rebalance(approved)
        logger.info(
            "Critic review normalized",
            approved=len(approved),
            kept=len(balanced),
            removed=len(removed),
        )
        return {
            "approved_suggestions": balanced,
            "removed_suggestions": removed,
            "general_analysis": general_analysis,
        }


def _first_present(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default
