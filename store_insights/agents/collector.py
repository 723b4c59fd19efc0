"""Collector agent: historical context, benchmarks and known gaps."""

from typing import Any

from store_insights.agents.base import BaseAgent
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import CollectorContext

MAX_UNAVAILABLE_ITEMS = 10


class CollectorAgent(BaseAgent):
    name = "collector"
    prompt_type = PromptType.COLLECTOR
    context_model = CollectorContext
    temperature = 0.3

    def default_response(self, context: CollectorContext) -> dict[str, Any]:
        return {
            "historical_summary": [],
            "success_patterns": [],
            "suggestions_to_avoid": [],
            "relevant_benchmarks": [],
            "identified_gaps": [],
            "special_context": "Could not parse collector response",
        }

    def normalize(self, data: dict[str, Any], context: CollectorContext) -> dict[str, Any]:
        unavailable = data.get("data_not_available")
        if isinstance(unavailable, list) and len(unavailable) > MAX_UNAVAILABLE_ITEMS:
            hidden = len(unavailable) - MAX_UNAVAILABLE_ITEMS
            data["data_not_available"] = unavailable[:MAX_UNAVAILABLE_ITEMS] + [
                f"... and {hidden} more unavailable items"
            ]
        return data
