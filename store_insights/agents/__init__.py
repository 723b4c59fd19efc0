"""LLM-backed analysis agents."""

from store_insights.agents.analyst import AnalystAgent
from store_insights.agents.base import BaseAgent
from store_insights.agents.collector import CollectorAgent
from store_insights.agents.critic import CriticAgent
from store_insights.agents.lite import LiteAnalystAgent, LiteStrategistAgent
from store_insights.agents.profile_synthesizer import ProfileSynthesizerAgent
from store_insights.agents.strategist import StrategistAgent

__all__ = [
    "BaseAgent",
    "ProfileSynthesizerAgent",
    "CollectorAgent",
    "AnalystAgent",
    "StrategistAgent",
    "CriticAgent",
    "LiteAnalystAgent",
    "LiteStrategistAgent",
]
