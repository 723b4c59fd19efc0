"""
Base class for the LLM-backed analysis agents.

Every agent follows the same cycle: validate its typed context, render its
prompt, call the AI manager with its sampling options, extract JSON from the
reply and normalize it over a default structure.

Extraction failures never raise; the agent logs a warning and returns its
default structure. Provider and configuration errors propagate to the
orchestrator, which owns stage retries.

Example:
    >>> agent = CollectorAgent(ai_manager=AIManager())
    >>> context = await agent.execute(CollectorContext(store_name="Acme"))
    >>> print(context["special_context"])
"""

import copy
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from pydantic import BaseModel

from store_insights.agents.prompts import PromptType, render_prompt
from store_insights.models.schemas import ChatMessage, ModuleConfig, as_text
from store_insights.services.ai_manager import AIManager
from store_insights.services.json_extractor import JsonExtractor
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)


class BaseAgent(ABC):
    """
    Template for prompt-driven agents.

    Subclasses set ``name``, ``prompt_type``, ``context_model`` and their
    sampling options, and implement ``default_response`` and ``normalize``.
    """

    name: str = "agent"
    prompt_type: PromptType
    context_model: type[BaseModel]
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    def __init__(self, ai_manager: AIManager):
        self.ai_manager = ai_manager

    def coerce_context(self, context: Any) -> BaseModel:
        if isinstance(context, self.context_model):
            return context
        if isinstance(context, BaseModel):
            context = context.model_dump()
        return self.context_model.model_validate(context)

    def build_prompt(self, context: BaseModel) -> str:
        return render_prompt(self.prompt_type, context)

    def chat_options(self, context: BaseModel) -> dict[str, Any]:
        """Sampling options; a module temperature override wins."""
        options: dict[str, Any] = {}
        temperature = self.temperature
        module_config: Optional[ModuleConfig] = getattr(context, "module_config", None)
        if module_config is not None and module_config.temperature_override is not None:
            temperature = module_config.temperature_override
        if temperature is not None:
            options["temperature"] = temperature
        if self.max_tokens is not None:
            options["max_tokens"] = self.max_tokens
        return options

    async def execute(self, context: Any) -> dict[str, Any]:
        """
        Run the agent.

        Raises:
            ProviderError: Provider failures, including configuration errors
        """
        context = self.coerce_context(context)
        prompt = self.build_prompt(context)
        options = self.chat_options(context)

        logger.info(
            "Calling agent",
            agent=self.name,
            prompt_chars=len(prompt),
            **options,
        )
        started = time.time()
        response = await self.ai_manager.chat([ChatMessage.user(prompt)], **options)
        api_time_ms = int((time.time() - started) * 1000)

        data = JsonExtractor.extract(response, self.name)
        if not isinstance(data, dict):
            logger.warning(
                "Could not extract JSON from agent response, using defaults",
                agent=self.name,
                response_chars=len(response or ""),
            )
            return self.default_response(context)

        result = self.normalize(data, context)
        logger.info(
            "Agent completed",
            agent=self.name,
            keys=list(result.keys()),
            api_time_ms=api_time_ms,
        )
        return result

    @abstractmethod
    def default_response(self, context: BaseModel) -> dict[str, Any]:
        """Structure returned when the reply holds no usable JSON."""

    @abstractmethod
    def normalize(self, data: dict[str, Any], context: BaseModel) -> dict[str, Any]:
        """Shape extracted JSON into the agent's output contract."""


def merge_defaults(defaults: dict[str, Any], data: Any) -> dict[str, Any]:
    """
    Overlay ``data`` on a deep copy of ``defaults``.

    Nested dicts present on both sides are merged one level deeper; anything
    else in ``data`` replaces the default.
    """
    merged = copy.deepcopy(defaults)
    if not isinstance(data, dict):
        return merged
    for key, value in data.items():
        if isinstance(merged.get(key), dict) and isinstance(value, dict):
            merged[key] = {**merged[key], **value}
        else:
            merged[key] = value
    return merged


def merge_health(defaults: dict[str, Any], data: Any) -> dict[str, Any]:
    """Merge an ``overall_health`` block, coercing it to the summary's types."""
    health = merge_defaults(defaults, data)
    try:
        health["score"] = float(health.get("score"))
    except (TypeError, ValueError):
        logger.warning("Non-numeric health score replaced", score=str(health.get("score"))[:40])
        health["score"] = defaults["score"]
    health["classification"] = as_text(health.get("classification")) or defaults["classification"]
    points = health.get("main_points")
    if isinstance(points, str):
        points = [points]
    health["main_points"] = [as_text(p) for p in points] if isinstance(points, list) else []
    return health


__all__ = ["BaseAgent", "merge_defaults", "merge_health"]
