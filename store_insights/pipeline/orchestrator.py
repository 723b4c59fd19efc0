"""
Pipeline orchestrator using LangGraph.

Coordinates the multi-agent store analysis pipeline with state management,
stage timeouts, stage-level retries and failure routing.

Features:
    - Stateful execution with LangGraph StateGraph
    - Append-only PipelineContext threaded through every stage
    - Per-stage timeout and tenacity retry for transient failures
    - Conditional edges routing any failed stage to handle_failure
    - Stage progress saved through StatePersistence
    - Testing hook for step-by-step execution

Graph:
    niche_identification -> historical_context -> benchmark_retrieval
        -> collector -> analyst -> strategist -> critic
        -> similarity_filter -> persist -> END

    Any stage --(failed_stage set)--> handle_failure -> END
"""

import asyncio
import operator
import time
from datetime import datetime
from functools import wraps
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, TypedDict

import httpx
from langgraph.graph import END, StateGraph
from pydantic import ValidationError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
)

from store_insights.agents import (
    AnalystAgent,
    CollectorAgent,
    CriticAgent,
    ProfileSynthesizerAgent,
    StrategistAgent,
)
from store_insights.config.niches import GENERAL
from store_insights.config.settings import Settings, get_settings
from store_insights.models.schemas import (
    AnalysisRequest,
    AnalysisStatus,
    AnalystContext,
    CollectorContext,
    CriticContext,
    ErrorType,
    ModuleConfig,
    PipelineContext,
    PipelineResult,
    PipelineStage,
    ProfileContext,
    ReviewedSuggestion,
    StrategistContext,
)
from store_insights.pipeline.persistence import (
    AnalysisRepository,
    InMemoryAnalysisRepository,
    InMemoryStatePersistence,
    StatePersistence,
    to_suggestion_record,
)
from store_insights.pipeline.reporting import build_summary, extract_alerts, extract_opportunities
from store_insights.pipeline.router import AnalysisRouter
from store_insights.pipeline.store_data import get_store_stats, prepare_store_data
from store_insights.pipeline.suggestion_filters import (
    count_pending,
    dedupe_for_persistence,
    filter_by_similarity,
    filter_intra_batch_duplicates,
    filter_saturated_themes,
    identify_saturated_themes,
)
from store_insights.services.ai_manager import AIManager
from store_insights.services.embedding_service import EmbeddingError, EmbeddingService
from store_insights.services.knowledge_base import KnowledgeBase, load_seed_documents
from store_insights.utils.logger import LogContext, get_logger
from store_insights.utils.retry import AppError, AppTimeoutError, ErrorHandler, is_retryable_error

logger = get_logger(__name__)


# =============================================================================
# Constants and Configuration
# =============================================================================

DEFAULT_RETRY_DELAY_SECONDS = 120

STAGE_ORDER = list(PipelineStage)
FAILURE_NODE = "handle_failure"


# =============================================================================
# Pipeline State Definition (TypedDict for LangGraph)
# =============================================================================

class PipelineStateDict(TypedDict, total=False):
    """
    TypedDict-based pipeline state for LangGraph.

    Nodes return only the keys they change. ``errors`` accumulates across
    nodes through operator.add.
    """
    # Identifiers
    analysis_id: str
    store_id: int

    # Input
    request: AnalysisRequest
    module_config: ModuleConfig

    # Stage outputs
    context: PipelineContext
    suggestions_saved: int

    # Status tracking
    current_stage: str
    status: str
    failed_stage: Optional[str]
    error: Optional[str]
    error_details: dict

    # Error handling
    errors: Annotated[list[str], operator.add]

    # Metadata
    step_timings: dict
    started_at: str
    completed_at: Optional[str]


# =============================================================================
# Error Classes
# =============================================================================

class PipelineError(AppError):
    """Base exception for pipeline errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        details: Optional[dict] = None,
        recoverable: bool = False,
        stage: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.recoverable = recoverable
        self.stage = stage


class StageTimeoutError(PipelineError, AppTimeoutError):
    """A stage exceeded its time budget."""

    def __init__(self, stage: str, timeout_seconds: float):
        super().__init__(
            message=f"Stage '{stage}' timed out after {timeout_seconds} seconds",
            error_type=ErrorType.TIMEOUT_ERROR,
            details={"stage": stage, "timeout": timeout_seconds},
            recoverable=True,
            stage=stage,
        )


# =============================================================================
# Decorators for Node Execution
# =============================================================================

def with_timeout(timeout_seconds: float, stage: Optional[str] = None):
    """Decorator to add a stage timeout to async functions."""
    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout_seconds)
            except asyncio.TimeoutError:
                raise StageTimeoutError(stage or func.__name__, timeout_seconds) from None
        return wrapper
    return decorator


def track_timing(func: Callable):
    """Decorator to track node execution timing."""
    @wraps(func)
    async def wrapper(self, state: PipelineStateDict) -> dict[str, Any]:
        start_time = time.time()
        node_name = func.__name__.strip("_").replace("_node", "")

        logger.info("Starting stage", stage=node_name)
        result = await func(self, state)
        duration_ms = int((time.time() - start_time) * 1000)

        step_timings = dict(state.get("step_timings") or {})
        step_timings[node_name] = duration_ms
        result["step_timings"] = step_timings

        logger.info(
            "Finished stage",
            stage=node_name,
            duration_ms=duration_ms,
            failed=bool(result.get("failed_stage")),
        )
        return result

    return wrapper


StageWork = Callable[[PipelineStateDict], Awaitable[dict[str, Any]]]


# =============================================================================
# Main Pipeline Class
# =============================================================================

class StoreAnalysisPipeline:
    """
    LangGraph-based pipeline for full store analysis.

    Runs the Collector, Analyst, Strategist and Critic agents over a store
    snapshot, filters the approved suggestions and persists the outcome.

    Example:
        >>> async with StoreAnalysisPipeline() as pipeline:
        ...     result = await pipeline.run(AnalysisRequest(store=snapshot))
        ...     print(result.suggestions_count)
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        ai_manager: Optional[AIManager] = None,
        embeddings: Optional[EmbeddingService] = None,
        knowledge_base: Optional[KnowledgeBase] = None,
        repository: Optional[AnalysisRepository] = None,
        persistence: Optional[StatePersistence] = None,
        router: Optional[AnalysisRouter] = None,
    ):
        """
        Initialize the pipeline.

        Args:
            settings: Application settings (uses defaults if not provided)
            ai_manager: Chat routing manager shared by all agents
            embeddings: Embedding service for similarity filtering
            knowledge_base: Retrieval over benchmarks and strategies
            repository: Storage for analysis outcomes and suggestions
            persistence: Stage progress storage
            router: Analysis type to module config resolver
        """
        self.settings = settings or get_settings()
        self.ai_manager = ai_manager or AIManager(self.settings)
        self.embeddings = embeddings if embeddings is not None else EmbeddingService(self.settings)
        self.knowledge_base = knowledge_base or KnowledgeBase(embeddings=self.embeddings)
        self.repository = repository or InMemoryAnalysisRepository()
        self.persistence = persistence or InMemoryStatePersistence()
        self.router = router or AnalysisRouter()

        self.profile_agent = ProfileSynthesizerAgent(self.ai_manager)
        self.collector_agent = CollectorAgent(self.ai_manager)
        self.analyst_agent = AnalystAgent(self.ai_manager)
        self.strategist_agent = StrategistAgent(self.ai_manager)
        self.critic_agent = CriticAgent(self.ai_manager)

        self._graph = self._build_graph()

    async def __aenter__(self):
        await self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def _initialize_services(self) -> None:
        """Seed the knowledge base on first use."""
        if not self.knowledge_base.documents:
            await self.knowledge_base.load_documents(load_seed_documents())

    def _build_graph(self):
        """Build the LangGraph state machine with all nodes and edges."""
        graph = StateGraph(PipelineStateDict)

        nodes = {
            PipelineStage.NICHE_IDENTIFICATION: self._niche_identification_node,
            PipelineStage.HISTORICAL_CONTEXT: self._historical_context_node,
            PipelineStage.BENCHMARK_RETRIEVAL: self._benchmark_retrieval_node,
            PipelineStage.COLLECTOR: self._collector_node,
            PipelineStage.ANALYST: self._analyst_node,
            PipelineStage.STRATEGIST: self._strategist_node,
            PipelineStage.CRITIC: self._critic_node,
            PipelineStage.SIMILARITY_FILTER: self._similarity_filter_node,
            PipelineStage.PERSIST: self._persist_node,
        }
        for stage, node in nodes.items():
            graph.add_node(stage.value, node)
        graph.add_node(FAILURE_NODE, self._handle_failure_node)

        graph.set_entry_point(STAGE_ORDER[0].value)

        for stage, next_stage in zip(STAGE_ORDER, STAGE_ORDER[1:] + [None]):
            graph.add_conditional_edges(
                stage.value,
                self._route_after_stage,
                {
                    "continue": next_stage.value if next_stage else END,
                    "failed": FAILURE_NODE,
                },
            )
        graph.add_edge(FAILURE_NODE, END)

        return graph.compile()

    def _route_after_stage(self, state: PipelineStateDict) -> Literal["continue", "failed"]:
        return "failed" if state.get("failed_stage") else "continue"

    # =========================================================================
    # Stage Execution
    # =========================================================================

    def _retry_wait(self, retry_state: RetryCallState) -> float:
        delays = self.settings.stage_retry_delays or []
        index = retry_state.attempt_number - 1
        return delays[index] if index < len(delays) else DEFAULT_RETRY_DELAY_SECONDS

    async def _execute_stage(
        self,
        stage: PipelineStage,
        state: PipelineStateDict,
        work: StageWork,
    ) -> dict[str, Any]:
        """
        Run one stage with timeout and retry.

        Failures are captured into ``failed_stage`` rather than raised, so
        the graph can route to handle_failure.
        """
        timed_work = with_timeout(self.settings.stage_timeout_seconds, stage.value)(work)
        max_attempts = self.settings.stage_max_retries

        def record_attempt_failure(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            logger.warning(
                "Stage attempt failed, retrying",
                stage=stage.value,
                stage_number=stage.number,
                attempt=retry_state.attempt_number,
                max_attempts=max_attempts,
                error=str(error),
            )

        attempts = 0
        with LogContext(stage=stage.value):
            try:
                async for attempt in AsyncRetrying(
                    stop=stop_after_attempt(max_attempts),
                    wait=self._retry_wait,
                    retry=retry_if_exception(is_retryable_error),
                    before_sleep=record_attempt_failure,
                    reraise=True,
                ):
                    with attempt:
                        attempts = attempt.retry_state.attempt_number
                        update = await timed_work(state)
            except Exception as e:
                return self._stage_failure(stage, e, attempts)

        update["current_stage"] = stage.value
        await self.persistence.save_state(state["analysis_id"], {**state, **update})
        return update

    def _stage_failure(self, stage: PipelineStage, error: BaseException, attempts: int) -> dict[str, Any]:
        message = f"Stage {stage.number} ({stage.value}) failed: {error} (after {attempts} attempts)"
        error_type = ErrorHandler.categorize_error(error)
        details = {
            "stage": stage.value,
            "stage_number": stage.number,
            "error_type": error_type.value,
            "exception": type(error).__name__,
            "attempts": attempts,
            "retryable": is_retryable_error(error),
        }
        logger.error("Stage failed", **details, error=str(error))
        return {
            "failed_stage": stage.value,
            "error": message,
            "error_details": details,
            "errors": [message],
            "status": AnalysisStatus.FAILED.value,
        }

    # =========================================================================
    # Node Implementations
    # =========================================================================

    @track_timing
    async def _niche_identification_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.NICHE_IDENTIFICATION, state, self._identify_niche)

    async def _identify_niche(self, state: PipelineStateDict) -> dict[str, Any]:
        store = state["request"].store
        kb = self.knowledge_base
        categories = store.top_categories()
        store_context = kb.build_store_context(store.name, categories, store.top_product_titles())

        if store.niche and store.niche != GENERAL:
            niche = store.niche
            subcategory = store.niche_subcategory or kb.identify_subcategory(niche, store_context)
        else:
            niche, subcategory = await kb.identify_niche_and_subcategory(
                store.name, categories, store.top_product_titles()
            )
            if niche == GENERAL:
                niche = kb.identify_niche_by_keywords(store.name, categories)
                if niche != GENERAL:
                    subcategory = kb.identify_subcategory(niche, store_context)

        context = state["context"].with_stage(
            niche=niche,
            subcategory=subcategory,
            structured_benchmarks=kb.get_structured_benchmarks(niche, subcategory),
        )
        return {"context": context}

    @track_timing
    async def _historical_context_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.HISTORICAL_CONTEXT, state, self._load_history)

    async def _load_history(self, state: PipelineStateDict) -> dict[str, Any]:
        request = state["request"]
        period_days = self.settings.analysis_period_days
        saturated = identify_saturated_themes(
            request.previous_suggestions, self.knowledge_base.catalog.theme_keywords
        )
        if saturated:
            logger.info("Saturated themes identified", themes=saturated)

        context = state["context"].with_stage(
            previous_suggestions=list(request.previous_suggestions),
            saturated_themes=saturated,
            store_stats=get_store_stats(request.store, recent_days=period_days),
            store_data=request.store_metrics or prepare_store_data(request.store, period_days),
        )
        return {"context": context}

    @track_timing
    async def _benchmark_retrieval_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.BENCHMARK_RETRIEVAL, state, self._retrieve_benchmarks)

    async def _retrieve_benchmarks(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        store_data = context.store_data or {}
        products = store_data.get("products") or {}
        inventory = store_data.get("inventory") or {}
        customers = store_data.get("customers") or {}
        trends = store_data.get("trends") or {}
        metrics_view = {
            "inventory_alerts": {
                "out_of_stock": products.get("out_of_stock", 0),
                "low_stock": inventory.get("low_stock_products", 0),
            },
            "customer_insights": {"repeat_purchase_rate": customers.get("repeat_purchase_rate")},
            "trends": {"revenue_trend": trends.get("revenue_trend")},
        }

        benchmarks = await self.knowledge_base.search_benchmarks(context.niche, context.subcategory)
        strategies = await self.knowledge_base.get_relevant_strategies(metrics_view, context.niche)
        logger.info("Knowledge retrieved", benchmarks=len(benchmarks), strategies=len(strategies))
        return {"context": context.with_stage(benchmarks=benchmarks, strategies=strategies)}

    @track_timing
    async def _collector_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.COLLECTOR, state, self._collect)

    async def _collect(self, state: PipelineStateDict) -> dict[str, Any]:
        request = state["request"]
        store = request.store
        context = state["context"]

        profile = await self._synthesize_profile(state)
        collector_context = await self.collector_agent.execute(CollectorContext(
            store_name=store.name,
            platform=store.platform,
            niche=context.niche,
            subcategory=context.subcategory,
            store_stats=context.store_stats,
            store_profile=profile,
            store_goals=store.goals,
            previous_analyses=list(request.previous_analyses),
            previous_suggestions=context.previous_suggestions,
            benchmarks=context.benchmarks,
            structured_benchmarks=context.structured_benchmarks,
            module_config=state["module_config"],
        ))
        return {"context": context.with_stage(store_profile=profile, collector_context=collector_context)}

    async def _synthesize_profile(self, state: PipelineStateDict) -> dict[str, Any]:
        """Store profile for the later agents; an empty profile on failure."""
        store = state["request"].store
        context = state["context"]
        try:
            return await self.profile_agent.execute(ProfileContext(
                store_name=store.name,
                platform=store.platform,
                niche=context.niche,
                subcategory=context.subcategory,
                store_url=store.url,
                store_stats=context.store_stats,
                benchmarks=context.benchmarks,
                structured_benchmarks=context.structured_benchmarks,
                store_goals=store.goals,
            ))
        except Exception as e:
            logger.warning("Profile synthesis failed, continuing without profile", error=str(e))
            return {}

    @track_timing
    async def _analyst_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.ANALYST, state, self._analyze)

    async def _analyze(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        metrics = await self.analyst_agent.execute(AnalystContext(
            store_name=state["request"].store.name,
            niche=context.niche,
            subcategory=context.subcategory,
            store_data=context.store_data,
            collector_context=context.collector_context,
            benchmarks=context.benchmarks,
            structured_benchmarks=context.structured_benchmarks,
            module_config=state["module_config"],
        ))
        health = metrics.get("overall_health") or {}
        logger.info(
            "Store analyzed",
            health_score=health.get("score"),
            classification=health.get("classification"),
            anomalies=len(metrics.get("anomalies") or []),
        )
        return {"context": context.with_stage(analyst_metrics=metrics)}

    @track_timing
    async def _strategist_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.STRATEGIST, state, self._strategize)

    async def _strategize(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        output = await self.strategist_agent.execute(StrategistContext(
            store_name=state["request"].store.name,
            niche=context.niche,
            subcategory=context.subcategory,
            analysis=context.analyst_metrics,
            collector_context=context.collector_context,
            store_profile=context.store_profile,
            strategies=context.strategies,
            previous_suggestions=context.previous_suggestions,
            saturated_themes=context.saturated_themes,
            module_config=state["module_config"],
        ))
        logger.info("Suggestions generated", count=len(output.get("suggestions") or []))
        return {"context": context.with_stage(strategist_output=output)}

    @track_timing
    async def _critic_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.CRITIC, state, self._review)

    async def _review(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        critic_context = CriticContext(
            store_name=state["request"].store.name,
            niche=context.niche,
            suggestions=context.strategist_output.get("suggestions") or [],
            analysis=context.analyst_metrics,
            store_stats=context.store_stats,
            previous_suggestions=context.previous_suggestions,
            module_config=state["module_config"],
        )
        if critic_context.suggestions:
            output = await self.critic_agent.execute(critic_context)
        else:
            logger.warning("No suggestions to review")
            output = self.critic_agent.default_response(critic_context)

        approved = []
        for item in output.get("approved_suggestions") or []:
            try:
                approved.append(ReviewedSuggestion.model_validate(item))
            except ValidationError as e:
                title = (item.get("final_version") or {}).get("title") if isinstance(item, dict) else None
                logger.warning("Reviewed suggestion rejected", title=str(title)[:80], error=str(e))
        return {"context": context.with_stage(critic_output=output, approved_suggestions=approved)}

    @track_timing
    async def _similarity_filter_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.SIMILARITY_FILTER, state, self._filter_similar)

    async def _filter_similar(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        store_id = state["store_id"]

        batch = filter_intra_batch_duplicates(context.approved_suggestions or [])
        batch = filter_saturated_themes(
            batch, context.saturated_themes or {}, self.knowledge_base.catalog.theme_keywords
        )
        pending = await self.repository.pending_suggestion_count(store_id)
        pending += count_pending(context.previous_suggestions or [])

        filtered = await filter_by_similarity(batch, store_id, self.embeddings, pending)
        logger.info(
            "Suggestions filtered",
            approved=len(context.approved_suggestions or []),
            kept=len(filtered),
        )
        return {"context": context.with_stage(filtered_suggestions=filtered)}

    @track_timing
    async def _persist_node(self, state: PipelineStateDict) -> dict[str, Any]:
        return await self._execute_stage(PipelineStage.PERSIST, state, self._persist)

    async def _persist(self, state: PipelineStateDict) -> dict[str, Any]:
        context = state["context"]
        analysis_id = state["analysis_id"]
        store_id = state["store_id"]
        metrics = context.analyst_metrics or {}

        suggestions = [
            s for s in dedupe_for_persistence(context.filtered_suggestions or [])
            if s.final_version.description.strip()
        ]

        await self.repository.save_analysis(
            analysis_id,
            store_id,
            build_summary(metrics),
            extract_alerts(metrics),
            extract_opportunities(metrics),
        )

        records = await self.repository.save_suggestions(analysis_id, [
            to_suggestion_record(suggestion, analysis_id, store_id) for suggestion in suggestions
        ])
        for suggestion, record in zip(suggestions, records):
            if suggestion.embedding:
                await self._remember(suggestion.embedding, store_id, record.title, analysis_id)

        saved = len(records)
        logger.info("Suggestions persisted", saved=saved)
        return {
            "suggestions_saved": saved,
            "status": AnalysisStatus.COMPLETED.value,
            "completed_at": datetime.utcnow().isoformat(),
        }

    async def _remember(self, vector: list[float], store_id: int, title: str, analysis_id: str) -> None:
        try:
            await self.embeddings.remember_suggestion(
                vector, store_id, {"title": title, "analysis_id": analysis_id}
            )
        except (EmbeddingError, httpx.HTTPError) as e:
            logger.warning("Could not store suggestion embedding", title=title, error=str(e))

    async def _handle_failure_node(self, state: PipelineStateDict) -> dict[str, Any]:
        """Mark the analysis failed with stage-tagged diagnostics."""
        await self.repository.mark_failed(
            state["analysis_id"],
            state["store_id"],
            state.get("failed_stage") or "unknown",
            state.get("error") or "Unknown error",
            state.get("error_details") or {},
        )
        return {
            "status": AnalysisStatus.FAILED.value,
            "completed_at": datetime.utcnow().isoformat(),
        }

    # =========================================================================
    # Public API
    # =========================================================================

    def initial_state(self, request: AnalysisRequest) -> PipelineStateDict:
        return {
            "analysis_id": request.analysis_id,
            "store_id": request.store.id,
            "request": request,
            "module_config": self.router.resolve(request.analysis_type),
            "context": PipelineContext(),
            "suggestions_saved": 0,
            "current_stage": "",
            "status": AnalysisStatus.PROCESSING.value,
            "failed_stage": None,
            "error": None,
            "error_details": {},
            "errors": [],
            "step_timings": {},
            "started_at": datetime.utcnow().isoformat(),
            "completed_at": None,
        }

    async def run(self, request: AnalysisRequest) -> PipelineResult:
        """
        Execute the complete pipeline for a store.

        Raises:
            PipelineError: A stage failed; the analysis is marked failed
        """
        await self._initialize_services()
        initial_state = self.initial_state(request)

        with LogContext(analysis_id=request.analysis_id, store_id=request.store.id, pipeline="full"):
            logger.info(
                "Starting analysis pipeline",
                store=request.store.name,
                analysis_type=request.analysis_type,
            )
            await self.persistence.save_state(request.analysis_id, initial_state)

            final_state = await self._graph.ainvoke(initial_state)
            await self.persistence.save_state(request.analysis_id, final_state)

            if final_state.get("status") == AnalysisStatus.FAILED.value:
                details = final_state.get("error_details") or {}
                raise PipelineError(
                    message=final_state.get("error") or "Pipeline failed",
                    error_type=ErrorType(details.get("error_type", ErrorType.INTERNAL_ERROR.value)),
                    details={**details, "analysis_id": request.analysis_id},
                    recoverable=bool(details.get("retryable")),
                    stage=final_state.get("failed_stage"),
                )

            context: PipelineContext = final_state["context"]
            metrics = context.analyst_metrics or {}
            logger.info(
                "Analysis pipeline completed",
                suggestions=final_state.get("suggestions_saved", 0),
                duration_ms=sum((final_state.get("step_timings") or {}).values()),
            )
            return PipelineResult(
                analysis_id=request.analysis_id,
                overall_health=metrics.get("overall_health") or {},
                metrics=metrics,
                suggestions_count=final_state.get("suggestions_saved", 0),
                niche=context.niche or GENERAL,
                pipeline="full",
            )

    async def run_step(self, stage_name: str, state: PipelineStateDict) -> PipelineStateDict:
        """
        Execute a single stage (for testing/debugging).

        Returns:
            The state merged with the stage's update
        """
        node_methods = {
            PipelineStage.NICHE_IDENTIFICATION.value: self._niche_identification_node,
            PipelineStage.HISTORICAL_CONTEXT.value: self._historical_context_node,
            PipelineStage.BENCHMARK_RETRIEVAL.value: self._benchmark_retrieval_node,
            PipelineStage.COLLECTOR.value: self._collector_node,
            PipelineStage.ANALYST.value: self._analyst_node,
            PipelineStage.STRATEGIST.value: self._strategist_node,
            PipelineStage.CRITIC.value: self._critic_node,
            PipelineStage.SIMILARITY_FILTER.value: self._similarity_filter_node,
            PipelineStage.PERSIST.value: self._persist_node,
            FAILURE_NODE: self._handle_failure_node,
        }
        if stage_name not in node_methods:
            raise ValueError(f"Unknown stage: {stage_name}")

        await self._initialize_services()
        result = await node_methods[stage_name](state)
        errors = list(state.get("errors") or []) + list(result.pop("errors", []))
        return {**state, **result, "errors": errors}

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close all service connections."""
        await self.ai_manager.close()
        await self.embeddings.disconnect()


__all__ = [
    "StoreAnalysisPipeline",
    "PipelineStateDict",
    "PipelineError",
    "StageTimeoutError",
    "with_timeout",
    "track_timing",
]
