"""
Integration tests for the LangGraph pipeline orchestrator.

Tests the complete pipeline workflow including:
- Stage ordering and context threading
- Degraded agent replies
- Failure routing and stage-tagged diagnostics
- Stage retry and timeout handling
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from store_insights.pipeline.orchestrator import PipelineError, StoreAnalysisPipeline
from store_insights.pipeline.persistence import InMemoryAnalysisRepository, InMemoryStatePersistence
from store_insights.services.ai_providers import ProviderError


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def repository():
    return InMemoryAnalysisRepository()


@pytest.fixture
def persistence():
    return InMemoryStatePersistence()


@pytest.fixture
def build_pipeline(mock_settings, repository, persistence):
    def factory(ai_manager):
        return StoreAnalysisPipeline(
            settings=mock_settings,
            ai_manager=ai_manager,
            repository=repository,
            persistence=persistence,
        )
    return factory


@pytest.fixture
def happy_replies(profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply):
    return [profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply]


def transient_error() -> ProviderError:
    return ProviderError("Gemini API error (HTTP 503)", provider="gemini", status_code=503, retryable=True)


class SlowAIManager:
    async def chat(self, messages, provider=None, disable_fallback=False, **options):
        await asyncio.sleep(1)
        return "{}"

    async def close(self):
        pass


# =============================================================================
# Happy Path
# =============================================================================

@pytest.mark.asyncio
async def test_full_pipeline_persists_reviewed_suggestions(
    scripted_ai, build_pipeline, happy_replies, sample_request, repository, persistence
):
    ai = scripted_ai(happy_replies)
    async with build_pipeline(ai) as pipeline:
        result = await pipeline.run(sample_request)

    assert len(ai.calls) == 5
    assert result.pipeline == "full"
    assert result.niche == "fashion"
    assert result.suggestions_count == 4
    assert result.overall_health["score"] == 72

    analysis = await repository.get_analysis("analysis-1")
    assert analysis.status == "completed"
    assert analysis.summary.health_score == 72
    assert analysis.summary.main_insight == "Sales are growing"
    assert [a.type for a in analysis.alerts] == ["danger", "warning"]
    assert analysis.opportunities[0].title == "Cross-Sell Opportunity"

    suggestions = await repository.get_suggestions("analysis-1")
    assert [s.priority for s in suggestions] == [1, 2, 3, 4]
    assert all(s.store_id == 7 and s.status == "pending" for s in suggestions)
    assert sorted(s.specific_data["quality_score"] for s in suggestions) == [5, 6, 7, 8]

    state = await persistence.load_state("analysis-1")
    assert state["status"] == "completed"
    assert state["current_stage"] == "persist"
    assert set(state["step_timings"]) >= {"collector", "analyst", "critic", "persist"}


@pytest.mark.asyncio
async def test_prompts_carry_store_data(scripted_ai, build_pipeline, happy_replies, sample_request):
    ai = scripted_ai(happy_replies)
    await build_pipeline(ai).run(sample_request)

    analyst_prompt = ai.calls[2]["messages"][0].content
    assert "Bella Moda Boutique" in analyst_prompt
    assert "549.8" in analyst_prompt
    strategist_prompt = ai.calls[3]["messages"][0].content
    assert "Launch a loyalty program" in strategist_prompt


@pytest.mark.asyncio
async def test_precomputed_metrics_are_used(scripted_ai, build_pipeline, happy_replies, sample_request):
    request = sample_request.model_copy(update={"store_metrics": {"orders": {"total": 123456}}})
    ai = scripted_ai(happy_replies)
    await build_pipeline(ai).run(request)
    assert "123456" in ai.calls[2]["messages"][0].content


@pytest.mark.asyncio
async def test_duplicate_titles_are_saved_once(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply,
    sample_request, repository,
):
    approved = critic_reply["approved_suggestions"]
    critic_reply["approved_suggestions"] = approved + [approved[0]]
    ai = scripted_ai([profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply])

    result = await build_pipeline(ai).run(sample_request)
    titles = [s.title for s in await repository.get_suggestions("analysis-1")]
    assert result.suggestions_count == 4
    assert len(titles) == len(set(titles))


# =============================================================================
# Degraded Replies
# =============================================================================

@pytest.mark.asyncio
async def test_unparseable_analyst_reply_uses_defaults(
    scripted_ai, build_pipeline, profile_reply, collector_reply, strategist_reply, critic_reply,
    sample_request, repository,
):
    ai = scripted_ai([profile_reply, collector_reply, "I could not analyze this store.", strategist_reply, critic_reply])
    result = await build_pipeline(ai).run(sample_request)

    analysis = await repository.get_analysis("analysis-1")
    assert analysis.summary.health_score == 50
    assert analysis.summary.health_status == "attention"
    assert analysis.alerts == []
    assert result.suggestions_count == 4


@pytest.mark.asyncio
async def test_profile_failure_is_not_fatal(
    scripted_ai, build_pipeline, collector_reply, analyst_reply, strategist_reply, critic_reply, sample_request,
):
    profile_error = ProviderError("bad profile", provider="gemini")
    ai = scripted_ai([profile_error, collector_reply, analyst_reply, strategist_reply, critic_reply])
    result = await build_pipeline(ai).run(sample_request)
    assert result.suggestions_count == 4


@pytest.mark.asyncio
async def test_critic_skipped_without_suggestions(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, sample_request, repository,
):
    ai = scripted_ai([profile_reply, collector_reply, analyst_reply, {"suggestions": []}])
    result = await build_pipeline(ai).run(sample_request)

    assert len(ai.calls) == 4
    assert result.suggestions_count == 0
    assert (await repository.get_analysis("analysis-1")).status == "completed"


@pytest.mark.asyncio
async def test_critic_step_lists_are_flattened(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply,
    sample_request, repository,
):
    steps = ["1. Pick pairs", "2. Publish bundle"]
    first = critic_reply["approved_suggestions"][0]
    first["final_version"] = {**first["final_version"], "recommended_action": steps}
    ai = scripted_ai([profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply])

    result = await build_pipeline(ai).run(sample_request)

    assert result.suggestions_count == 4
    saved = {s.title: s for s in await repository.get_suggestions("analysis-1")}
    assert saved["Bundle dresses with tees"].recommended_action == "1. Pick pairs\n2. Publish bundle"


@pytest.mark.asyncio
async def test_non_numeric_health_score_uses_default(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply,
    sample_request, repository,
):
    analyst_reply["overall_health"]["score"] = "72/100"
    ai = scripted_ai([profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply])

    result = await build_pipeline(ai).run(sample_request)

    assert result.overall_health["score"] == 50
    analysis = await repository.get_analysis("analysis-1")
    assert analysis.status == "completed"
    assert analysis.summary.health_score == 50
    assert analysis.summary.health_status == "healthy"


# =============================================================================
# Failure Routing
# =============================================================================

@pytest.mark.asyncio
async def test_permanent_failure_marks_analysis_failed(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, sample_request, repository,
):
    error = ProviderError("Gemini API error (HTTP 400)", provider="gemini", status_code=400)
    ai = scripted_ai([profile_reply, collector_reply, analyst_reply, error])

    with pytest.raises(PipelineError) as exc_info:
        await build_pipeline(ai).run(sample_request)

    assert exc_info.value.stage == "strategist"
    assert not exc_info.value.recoverable
    assert exc_info.value.details["attempts"] == 1
    assert exc_info.value.details["error_type"] == "provider_error"

    analysis = await repository.get_analysis("analysis-1")
    assert analysis.status == "failed"
    assert analysis.failed_stage == "strategist"
    assert "Stage 6 (strategist) failed" in analysis.error
    assert await repository.get_suggestions("analysis-1") == []


@pytest.mark.asyncio
async def test_transient_failure_is_retried(
    scripted_ai, build_pipeline, profile_reply, collector_reply, analyst_reply, strategist_reply, critic_reply,
    sample_request,
):
    ai = scripted_ai([
        profile_reply, collector_reply, transient_error(), analyst_reply, strategist_reply, critic_reply,
    ])
    result = await build_pipeline(ai).run(sample_request)
    assert len(ai.calls) == 6
    assert result.suggestions_count == 4


class FlakyRepository(InMemoryAnalysisRepository):
    """Writes part of the batch, then drops the connection, once."""

    def __init__(self):
        super().__init__()
        self.suggestion_writes = 0

    async def save_suggestions(self, analysis_id, records):
        self.suggestion_writes += 1
        if self.suggestion_writes == 1:
            await super().save_suggestions(analysis_id, records[:2])
            raise ConnectionError("connection reset by peer")
        return await super().save_suggestions(analysis_id, records)


@pytest.mark.asyncio
async def test_retried_persist_does_not_duplicate_suggestions(
    scripted_ai, mock_settings, persistence, happy_replies, sample_request,
):
    repository = FlakyRepository()
    pipeline = StoreAnalysisPipeline(
        settings=mock_settings,
        ai_manager=scripted_ai(happy_replies),
        repository=repository,
        persistence=persistence,
    )
    result = await pipeline.run(sample_request)

    assert repository.suggestion_writes == 2
    titles = [s.title for s in await repository.get_suggestions("analysis-1")]
    assert len(titles) == result.suggestions_count == 4
    assert len(set(titles)) == 4
    assert (await repository.get_analysis("analysis-1")).status == "completed"


@pytest.mark.asyncio
async def test_retries_exhausted(scripted_ai, build_pipeline, profile_reply, collector_reply, sample_request):
    ai = scripted_ai([profile_reply, collector_reply, transient_error(), transient_error(), transient_error()])

    with pytest.raises(PipelineError) as exc_info:
        await build_pipeline(ai).run(sample_request)

    assert exc_info.value.stage == "analyst"
    assert exc_info.value.recoverable
    assert exc_info.value.details["attempts"] == 3


@pytest.mark.asyncio
async def test_stage_timeout(mock_settings, build_pipeline, sample_request, repository):
    mock_settings.stage_timeout_seconds = 0.05

    with pytest.raises(PipelineError) as exc_info:
        await build_pipeline(SlowAIManager()).run(sample_request)

    assert exc_info.value.stage == "collector"
    assert exc_info.value.details["error_type"] == "timeout_error"
    assert (await repository.get_analysis("analysis-1")).status == "failed"


# =============================================================================
# Step Execution
# =============================================================================

@pytest_asyncio.fixture
async def idle_pipeline(scripted_ai, build_pipeline):
    pipeline = build_pipeline(scripted_ai([]))
    yield pipeline
    await pipeline.close()


@pytest.mark.asyncio
async def test_run_step(idle_pipeline, sample_request):
    state = idle_pipeline.initial_state(sample_request)
    state = await idle_pipeline.run_step("niche_identification", state)
    assert state["context"].niche == "fashion"
    assert state["current_stage"] == "niche_identification"

    state = await idle_pipeline.run_step("historical_context", state)
    assert state["context"].store_data["orders"]["total"] == 4
    assert state["context"].store_stats["total_customers"] == 4


@pytest.mark.asyncio
async def test_run_step_rejects_unknown_stage(idle_pipeline, sample_request):
    with pytest.raises(ValueError):
        await idle_pipeline.run_step("poetry", idle_pipeline.initial_state(sample_request))


@pytest.mark.asyncio
async def test_specialized_module_is_resolved(idle_pipeline, sample_request):
    request = sample_request.model_copy(update={"analysis_type": "financial"})
    state = idle_pipeline.initial_state(request)
    assert state["module_config"].is_specialized
    assert state["module_config"].analysis_type == "financial"


@pytest.mark.asyncio
async def test_strategy_lookup_sees_retention_and_revenue_trend(idle_pipeline, sample_request):
    state = idle_pipeline.initial_state(sample_request)
    for step in ("niche_identification", "historical_context"):
        state = await idle_pipeline.run_step(step, state)

    lookup = AsyncMock(return_value=[])
    with patch.object(idle_pipeline.knowledge_base, "get_relevant_strategies", lookup):
        await idle_pipeline.run_step("benchmark_retrieval", state)

    metrics_view, niche = lookup.await_args.args
    assert niche == "fashion"
    assert metrics_view["customer_insights"] == {"repeat_purchase_rate": 33.33}
    assert metrics_view["trends"] == {"revenue_trend": "strong_growth"}
    assert metrics_view["inventory_alerts"] == {"out_of_stock": 1, "low_stock": 1}
