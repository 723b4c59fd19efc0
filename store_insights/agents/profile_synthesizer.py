"""Profile synthesizer agent: a shared store profile for the other agents."""

from datetime import date
from typing import Any

from store_insights.agents.base import BaseAgent
from store_insights.agents.prompts import PromptType
from store_insights.models.schemas import ProfileContext

UNDETERMINED = "undetermined"


class ProfileSynthesizerAgent(BaseAgent):
    name = "profile_synthesizer"
    prompt_type = PromptType.PROFILE
    context_model = ProfileContext
    temperature = 0.1

    def default_response(self, context: ProfileContext) -> dict[str, Any]:
        return {
            "store_profile": {
                "name": context.store_name or "Store",
                "url": context.store_url or "N/A",
                "platform": context.platform,
                "niche": context.niche,
                "detailed_niche": context.subcategory,
                "estimated_size": UNDETERMINED,
                "digital_maturity": UNDETERMINED,
                "target_audience": UNDETERMINED,
                "visible_differentiators": [],
                "relevant_seasonality": UNDETERMINED,
            },
            "analysis_context": {
                "analysis_date": date.today().isoformat(),
                "upcoming_seasonal_events": [],
                "initial_observations": "Profile generated with default values because the synthesis failed.",
            },
        }

    def normalize(self, data: dict[str, Any], context: ProfileContext) -> dict[str, Any]:
        return data
