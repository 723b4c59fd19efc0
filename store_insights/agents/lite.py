"""
Lite agents.

Shorter prompts and tighter token limits for the two-stage lite pipeline.
The lite strategist asks for six suggestions (two per impact level) and
returns raw candidates; validation happens in the lite pipeline.
"""

from typing import Any

from store_insights.agents.base import BaseAgent, merge_defaults, merge_health
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import LiteAnalystContext, LiteStrategistContext

LITE_AOV_BENCHMARK = 150


class LiteAnalystAgent(BaseAgent):
    name = "lite_analyst"
    prompt_type = PromptType.LITE_ANALYST
    context_model = LiteAnalystContext
    temperature = 0.2
    max_tokens = 4096

    def default_response(self, context: LiteAnalystContext) -> dict[str, Any]:
        return {
            "metrics": {
                "sales": {"total": 0, "daily_average": 0, "trend": "stable"},
                "average_order_value": {"value": 0, "benchmark": LITE_AOV_BENCHMARK},
                "cancellation_rate": 0,
                "inventory": {"out_of_stock_products": 0, "critical_stock_products": 0},
                "coupons": {"usage_rate": 0, "ticket_impact": 0},
            },
            "anomalies": [],
            "overall_health": {
                "score": 50,
                "classification": "attention",
                "main_points": ["Could not complete the analysis"],
            },
        }

    def normalize(self, data: dict[str, Any], context: LiteAnalystContext) -> dict[str, Any]:
        default = self.default_response(context)
        anomalies = data.get("anomalies")
        return {
            "metrics": merge_defaults(default["metrics"], data.get("metrics")),
            "anomalies": anomalies if isinstance(anomalies, list) else [],
            "overall_health": merge_health(default["overall_health"], data.get("overall_health")),
        }


class LiteStrategistAgent(BaseAgent):
    name = "lite_strategist"
    prompt_type = PromptType.LITE_STRATEGIST
    context_model = LiteStrategistContext
    temperature = 0.7
    max_tokens = 6144

    def default_response(self, context: LiteStrategistContext) -> dict[str, Any]:
        return {"suggestions": []}

    def normalize(self, data: dict[str, Any], context: LiteStrategistContext) -> dict[str, Any]:
        suggestions = data.get("suggestions")
        return {"suggestions": suggestions if isinstance(suggestions, list) else []}
