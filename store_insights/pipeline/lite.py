"""
Lite analysis pipeline.

Two agent calls over seven days of compact metrics: LiteAnalyst, then
LiteStrategist with inline validation. No Critic and no embeddings. The
persisted suggestion columns match the full pipeline, and the summary is
tagged ``pipeline: "lite"``.

Example:
    >>> pipeline = LitePipeline()
    >>> result = await pipeline.run(AnalysisRequest(store=snapshot))
    >>> result.pipeline
    'lite'
"""

from typing import Any, Optional

from pydantic import ValidationError

from store_insights.agents import LiteAnalystAgent, LiteStrategistAgent
from store_insights.config.niches import GENERAL
from store_insights.config.settings import Settings, get_settings
from store_insights.models.schemas import (
    AnalysisRequest,
    ExpectedImpact,
    LiteAnalystContext,
    LiteStrategistContext,
    PipelineResult,
    ReviewedSuggestion,
    SuggestionDraft,
    as_text,
)
from store_insights.pipeline.orchestrator import PipelineError
from store_insights.pipeline.persistence import (
    AnalysisRepository,
    InMemoryAnalysisRepository,
    to_suggestion_record,
)
from store_insights.pipeline.reporting import build_summary, extract_lite_alerts
from store_insights.pipeline.store_data import prepare_compact_data
from store_insights.services.ai_manager import AIManager
from store_insights.services.knowledge_base import KnowledgeBase
from store_insights.utils.logger import LogContext, get_logger
from store_insights.utils.retry import ErrorHandler, is_retryable_error

logger = get_logger(__name__)

REQUIRED_FIELDS = ("category", "title", "description", "expected_impact")
NICHE_CATEGORY_LIMIT = 3


def validate_lite_suggestions(suggestions: list[Any]) -> list[ReviewedSuggestion]:
    """Keep complete suggestions and wrap them as reviewed, numbered from 1."""
    valid: list[ReviewedSuggestion] = []
    for suggestion in suggestions:
        if not isinstance(suggestion, dict):
            continue
        missing = [f for f in REQUIRED_FIELDS if not str(suggestion.get(f) or "").strip()]
        if missing:
            logger.debug("Lite suggestion dropped", title=suggestion.get("title"), missing=missing)
            continue

        try:
            draft = SuggestionDraft.model_validate({
                **suggestion,
                "expected_impact": ExpectedImpact.parse(
                    suggestion.get("expected_impact"), default=ExpectedImpact.MEDIUM
                ),
                "recommended_action": as_text(suggestion.get("recommended_action")),
            })
        except ValidationError as e:
            logger.warning("Lite suggestion rejected", title=str(suggestion.get("title"))[:80], error=str(e))
            continue
        valid.append(ReviewedSuggestion(
            original=suggestion,
            final_version=draft,
            final_priority=len(valid) + 1,
        ))
    return valid


class LitePipeline:
    """Two-stage analysis for quick store checkups."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ai_manager: Optional[AIManager] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        repository: Optional[AnalysisRepository] = None,
    ):
        self.settings = settings or get_settings()
        self.ai_manager = ai_manager or AIManager(self.settings)
        self.knowledge_base = knowledge_base or KnowledgeBase()
        self.repository = repository or InMemoryAnalysisRepository()
        self.analyst_agent = LiteAnalystAgent(self.ai_manager)
        self.strategist_agent = LiteStrategistAgent(self.ai_manager)

    def identify_niche(self, request: AnalysisRequest) -> str:
        store = request.store
        if store.niche and store.niche != GENERAL:
            return store.niche
        return self.knowledge_base.identify_niche_by_keywords(
            store.name, store.top_categories(NICHE_CATEGORY_LIMIT)
        )

    async def run(self, request: AnalysisRequest) -> PipelineResult:
        """
        Run the lite analysis and persist its outcome.

        Raises:
            PipelineError: An agent call failed; the analysis is marked failed
        """
        store = request.store
        with LogContext(analysis_id=request.analysis_id, store_id=store.id, pipeline="lite"):
            logger.info("Starting lite analysis", store=store.name)
            stage = "lite_analyst"
            try:
                metrics = request.store_metrics or prepare_compact_data(
                    store, self.settings.lite_analysis_period_days
                )
                niche = self.identify_niche(request)

                analysis = await self.analyst_agent.execute(LiteAnalystContext(
                    store_name=store.name, niche=niche, metrics=metrics,
                ))

                stage = "lite_strategist"
                output = await self.strategist_agent.execute(LiteStrategistContext(
                    store_name=store.name,
                    niche=niche,
                    metrics=metrics,
                    analysis=analysis,
                    previous_titles=[s.title for s in request.previous_suggestions],
                ))
                suggestions = validate_lite_suggestions(output.get("suggestions") or [])

                stage = "persist"
                await self.repository.save_analysis(
                    request.analysis_id,
                    store.id,
                    build_summary(analysis, pipeline="lite", default_insight="Lite analysis completed"),
                    extract_lite_alerts(analysis),
                    [],
                )
                await self.repository.save_suggestions(request.analysis_id, [
                    to_suggestion_record(suggestion, request.analysis_id, store.id)
                    for suggestion in suggestions
                ])
            except Exception as e:
                raise await self._fail(request, stage, e) from e

            logger.info("Lite analysis completed", suggestions=len(suggestions), niche=niche)
            return PipelineResult(
                analysis_id=request.analysis_id,
                overall_health=analysis.get("overall_health") or {},
                metrics=analysis,
                suggestions_count=len(suggestions),
                niche=niche,
                pipeline="lite",
            )

    async def _fail(self, request: AnalysisRequest, stage: str, error: Exception) -> PipelineError:
        error_type = ErrorHandler.categorize_error(error)
        details = {
            "stage": stage,
            "error_type": error_type.value,
            "exception": type(error).__name__,
            "pipeline": "lite",
        }
        message = f"Lite analysis failed at {stage}: {error}"
        await self.repository.mark_failed(request.analysis_id, request.store.id, stage, message, details)
        return PipelineError(
            message=message,
            error_type=error_type,
            details=details,
            recoverable=is_retryable_error(error),
            stage=stage,
        )

    async def close(self) -> None:
        await self.ai_manager.close()


__all__ = ["LitePipeline", "validate_lite_suggestions"]
