"""Pipeline module for the Store Insights Pipeline."""

from store_insights.pipeline.lite import LitePipeline, validate_lite_suggestions
from store_insights.pipeline.orchestrator import (
    PipelineError,
    PipelineStateDict,
    StageTimeoutError,
    StoreAnalysisPipeline,
)
from store_insights.pipeline.persistence import (
    AnalysisRepository,
    InMemoryAnalysisRepository,
    InMemoryStatePersistence,
    StatePersistence,
)
from store_insights.pipeline.router import AnalysisRouter

__all__ = [
    "StoreAnalysisPipeline",
    "LitePipeline",
    "validate_lite_suggestions",
    "PipelineError",
    "StageTimeoutError",
    "PipelineStateDict",
    "AnalysisRouter",
    "AnalysisRepository",
    "InMemoryAnalysisRepository",
    "StatePersistence",
    "InMemoryStatePersistence",
]
