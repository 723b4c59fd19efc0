"""
Analyst agent.

Turns period store data into normalized metrics, anomalies, patterns and an
overall health verdict. Each metrics section is merged over a default
skeleton, so downstream consumers can read any documented key.
"""

from typing import Any

from store_insights.agents.base import BaseAgent, merge_defaults, merge_health
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import AnalystContext

DEFAULT_HEALTH_SCORE = 50
DEFAULT_HEALTH_STATUS = "attention"


def default_metrics() -> dict[str, Any]:
    return {
        "sales": {
            "total": 0,
            "daily_average": 0,
            "trend": "stable",
            "previous_period_variation": 0,
        },
        "average_order_value": {
            "value": 0,
            "benchmark": 0,
            "percentage_difference": 0,
        },
        "conversion": {
            "rate": 0,
            "benchmark": 0,
        },
        "cancellation": {
            "rate": 0,
            "main_reasons": [],
        },
        "inventory": {
            "out_of_stock_products": 0,
            "critical_stock_products": 0,
            "stagnant_inventory_value": 0,
        },
        "coupons": {
            "usage_rate": 0,
            "ticket_impact": 0,
        },
    }


class AnalystAgent(BaseAgent):
    name = "analyst"
    prompt_type = PromptType.ANALYST
    context_model = AnalystContext
    temperature = 0.2

    def default_response(self, context: AnalystContext) -> dict[str, Any]:
        return {
            "metrics": default_metrics(),
            "anomalies": [],
            "identified_patterns": [],
            "overall_health": {
                "score": DEFAULT_HEALTH_SCORE,
                "classification": DEFAULT_HEALTH_STATUS,
                "main_points": ["Could not complete full analysis"],
            },
        }

    def normalize(self, data: dict[str, Any], context: AnalystContext) -> dict[str, Any]:
        default = self.default_response(context)
        return {
            "metrics": merge_defaults(default["metrics"], data.get("metrics")),
            "anomalies": _as_list(data.get("anomalies")),
            "identified_patterns": _as_list(data.get("identified_patterns")),
            "overall_health": merge_health(default["overall_health"], data.get("overall_health")),
        }


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []
