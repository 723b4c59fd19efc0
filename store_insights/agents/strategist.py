"""
Strategist agent.

Generates candidate suggestions from the analysis. Candidates missing a
required field are dropped; the rest are normalized into ``SuggestionDraft``
shape. Two reply formats are accepted: ``description``/``recommended_action``
and the shorter ``problem``/``action`` variant.
"""

from typing import Any, Optional

from pydantic import ValidationError

from store_insights.agents.base import BaseAgent
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import ExpectedImpact, StrategistContext, SuggestionDraft
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)


def is_valid_suggestion(suggestion: Any) -> bool:
    if not isinstance(suggestion, dict):
        return False
    has_description = bool(suggestion.get("description") or suggestion.get("problem"))
    has_action = bool(suggestion.get("recommended_action") or suggestion.get("action"))
    return bool(
        suggestion.get("category")
        and suggestion.get("title")
        and has_description
        and has_action
        and suggestion.get("expected_impact")
    )


def normalize_suggestion(suggestion: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Map a raw candidate onto the draft fields. None if it cannot be built."""
    specific_data = suggestion.get("specific_data")
    specific_data = dict(specific_data) if isinstance(specific_data, dict) else {}
    if suggestion.get("expected_result"):
        specific_data["expected_result"] = suggestion["expected_result"]

    implementation = suggestion.get("implementation")
    implementation = implementation if isinstance(implementation, dict) else {}

    try:
        draft = SuggestionDraft(
            category=str(suggestion["category"]),
            title=suggestion["title"],
            description=suggestion.get("description") or suggestion.get("problem") or "",
            recommended_action=suggestion.get("recommended_action") or suggestion.get("action") or "",
            expected_impact=ExpectedImpact.parse(suggestion.get("expected_impact")),
            target_metrics=suggestion.get("target_metrics"),
            specific_data=specific_data,
            data_justification=suggestion.get("data_justification") or suggestion.get("data_source") or "",
            implementation_time=str(
                suggestion.get("implementation_time") or implementation.get("complexity") or "immediate"
            ),
        )
    except ValidationError as e:
        logger.warning("Strategist suggestion rejected", title=str(suggestion.get("title"))[:80], error=str(e))
        return None

    normalized = draft.model_dump(exclude={"priority"})
    if implementation:
        normalized["implementation"] = implementation
    if suggestion.get("competitor_reference"):
        normalized["competitor_reference"] = suggestion["competitor_reference"]
    return normalized


class StrategistAgent(BaseAgent):
    name = "strategist"
    prompt_type = PromptType.STRATEGIST
    context_model = StrategistContext
    temperature = 0.7

    def default_response(self, context: StrategistContext) -> dict[str, Any]:
        return {
            "suggestions": [],
            "general_observations": "Could not generate suggestions",
        }

    def normalize(self, data: dict[str, Any], context: StrategistContext) -> dict[str, Any]:
        raw = data.get("suggestions")
        raw = raw if isinstance(raw, list) else []

        suggestions = []
        for candidate in raw:
            if not is_valid_suggestion(candidate):
                logger.info(
                    "Strategist suggestion dropped for missing fields",
                    title=str(candidate.get("title", ""))[:80] if isinstance(candidate, dict) else None,
                )
                continue
            normalized = normalize_suggestion(candidate)
            if normalized is not None:
                suggestions.append(normalized)

        logger.info(
            "Strategist suggestions validated",
            received=len(raw),
            valid=len(suggestions),
        )
        return {
            "suggestions": suggestions,
            "general_observations": data.get("general_observations") or "",
        }
