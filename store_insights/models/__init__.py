"""Data models module for the Store Insights Pipeline."""

from store_insights.models.schemas import (
    # Base Models
    BaseModel,
    TimestampMixin,

    # Enums
    ExpectedImpact,
    AnalysisType,
    AnalysisStatus,
    SuggestionStatus,
    PipelineStage,
    ErrorType,
    ChatRole,

    # Chat
    ChatMessage,

    # Configuration
    ModuleConfig,

    # Store Data
    ProductRecord,
    OrderItem,
    OrderRecord,
    CouponRecord,
    StoreSnapshot,
    PreviousSuggestion,
    AnalysisRequest,

    # Knowledge
    KnowledgeDocument,

    # Suggestions
    SuggestionDraft,
    ReviewedSuggestion,
    SuggestionRecord,

    # Agent Contexts
    CollectorContext,
    AnalystContext,
    StrategistContext,
    CriticContext,
    ProfileContext,
    LiteAnalystContext,
    LiteStrategistContext,

    # Pipeline
    ContextOverwriteError,
    PipelineContext,

    # Results
    Alert,
    Opportunity,
    AnalysisSummary,
    AnalysisRecord,
    PipelineResult,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "ExpectedImpact",
    "AnalysisType",
    "AnalysisStatus",
    "SuggestionStatus",
    "PipelineStage",
    "ErrorType",
    "ChatRole",
    "ChatMessage",
    "ModuleConfig",
    "ProductRecord",
    "OrderItem",
    "OrderRecord",
    "CouponRecord",
    "StoreSnapshot",
    "PreviousSuggestion",
    "AnalysisRequest",
    "KnowledgeDocument",
    "SuggestionDraft",
    "ReviewedSuggestion",
    "SuggestionRecord",
    "CollectorContext",
    "AnalystContext",
    "StrategistContext",
    "CriticContext",
    "ProfileContext",
    "LiteAnalystContext",
    "LiteStrategistContext",
    "ContextOverwriteError",
    "PipelineContext",
    "Alert",
    "Opportunity",
    "AnalysisSummary",
    "AnalysisRecord",
    "PipelineResult",
]
