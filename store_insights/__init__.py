"""
Store Insights Pipeline.

A multi-agent AI pipeline that turns e-commerce store metrics into vetted,
deduplicated improvement suggestions, using LangGraph and pluggable chat
providers.
"""

__version__ = "1.0.0"
__author__ = "Store Insights Team"

# Lazy imports to avoid circular dependencies
def get_pipeline():
    """Get the StoreAnalysisPipeline class (lazy import)."""
    from store_insights.pipeline.orchestrator import StoreAnalysisPipeline
    return StoreAnalysisPipeline

__all__ = ["get_pipeline", "__version__"]
