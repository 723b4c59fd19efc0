"""
Pydantic models and schemas for the Store Insights Pipeline.

This module defines all data structures used throughout the pipeline,
ensuring type safety, validation, and serialization consistency.

Models:
    - StoreSnapshot: Raw store identity, catalog, orders and coupons
    - AnalysisRequest: Frozen input bundle for a pipeline run
    - ModuleConfig: Specialization overrides keyed by analysis type
    - SuggestionDraft / ReviewedSuggestion: Suggestion lifecycle
    - Agent contexts: Typed inputs for each agent
    - PipelineContext: Append-only accumulator threaded through stages
    - PipelineResult: Output of a completed run
"""

from __future__ import annotations

import unicodedata
from datetime import datetime
from enum import Enum
from typing import Any, Optional, Self
from uuid import uuid4

from pydantic import (
    BaseModel as PydanticBaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)


# =============================================================================
# Base Configuration
# =============================================================================

class BaseModel(PydanticBaseModel):
    """Base model with common configuration for all schemas."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=False,
        populate_by_name=True,
        use_enum_values=True,
    )

    def to_json(self, **kwargs) -> str:
        """Serialize model to JSON string."""
        return self.model_dump_json(indent=2, **kwargs)

    def to_dict(self, **kwargs) -> dict[str, Any]:
        """Serialize model to dictionary."""
        return self.model_dump(**kwargs)

    @classmethod
    def from_json(cls, json_str: str) -> Self:
        """Deserialize model from JSON string."""
        return cls.model_validate_json(json_str)


class TimestampMixin(BaseModel):
    """Mixin for models that need timestamp tracking."""

    created_at: datetime = Field(
        default_factory=datetime.utcnow,
        description="Record creation timestamp in ISO 8601 format",
    )

    @field_serializer("created_at")
    def serialize_datetime(self, value: Optional[datetime]) -> Optional[str]:
        """Serialize datetime to ISO format string."""
        if not value:
            return None
        if value.tzinfo is None:
            return value.isoformat() + "Z"
        return value.isoformat()


# =============================================================================
# Enums
# =============================================================================

def _fold(value: str) -> str:
    """Lowercase, repair latin-1 mojibake and strip accents."""
    text = value.strip()
    try:
        text = text.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        pass
    decomposed = unicodedata.normalize("NFKD", text.lower())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


class ExpectedImpact(str, Enum):
    """Expected impact of a suggestion."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @classmethod
    def parse(cls, raw: Any, default: "ExpectedImpact" = None) -> "ExpectedImpact":
        """
        Normalize a free-form impact label.

        Matching is case-insensitive and accent-insensitive, and covers the
        Portuguese variants models tend to emit. Anything unrecognized maps
        to ``default`` (LOW unless given).
        """
        fallback = default or cls.LOW
        if isinstance(raw, cls):
            return raw
        if not isinstance(raw, str) or not raw.strip():
            return fallback
        return _IMPACT_SYNONYMS.get(_fold(raw), fallback)


_IMPACT_SYNONYMS: dict[str, ExpectedImpact] = {
    "high": ExpectedImpact.HIGH,
    "alto": ExpectedImpact.HIGH,
    "alta": ExpectedImpact.HIGH,
    "medium": ExpectedImpact.MEDIUM,
    "medio": ExpectedImpact.MEDIUM,
    "media": ExpectedImpact.MEDIUM,
    "moderate": ExpectedImpact.MEDIUM,
    "low": ExpectedImpact.LOW,
    "baixo": ExpectedImpact.LOW,
    "baixa": ExpectedImpact.LOW,
}


class AnalysisType(str, Enum):
    """Analysis module requested for a run."""
    GENERAL = "general"
    FINANCIAL = "financial"
    CONVERSION = "conversion"
    COMPETITORS = "competitors"
    CAMPAIGNS = "campaigns"
    TRACKING = "tracking"

    @property
    def label(self) -> str:
        return _ANALYSIS_TYPE_INFO[self][0]

    @property
    def description(self) -> str:
        return _ANALYSIS_TYPE_INFO[self][1]

    @property
    def is_available(self) -> bool:
        return self in (
            AnalysisType.GENERAL,
            AnalysisType.FINANCIAL,
            AnalysisType.CONVERSION,
            AnalysisType.COMPETITORS,
        )

    @classmethod
    def available(cls) -> list["AnalysisType"]:
        return [t for t in cls if t.is_available]


_ANALYSIS_TYPE_INFO: dict[AnalysisType, tuple[str, str]] = {
    AnalysisType.GENERAL: ("General Analysis", "Complete store diagnosis across all areas"),
    AnalysisType.FINANCIAL: ("Financial Analysis", "Margins, revenue, average ticket and discount efficiency"),
    AnalysisType.CONVERSION: ("Conversion Analysis", "Funnel, checkout, abandonment and product page performance"),
    AnalysisType.COMPETITORS: ("Competitor Analysis", "Positioning, pricing and differentiation against competitors"),
    AnalysisType.CAMPAIGNS: ("Campaign Analysis", "Marketing campaign performance"),
    AnalysisType.TRACKING: ("Tracking Analysis", "Tracking and attribution health"),
}


class AnalysisStatus(str, Enum):
    """Status of an analysis record."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SuggestionStatus(str, Enum):
    """Lifecycle status of a persisted suggestion."""
    PENDING = "pending"
    NEW = "new"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"
    IGNORED = "ignored"


class PipelineStage(str, Enum):
    """Full pipeline stages, in execution order."""
    NICHE_IDENTIFICATION = "niche_identification"
    HISTORICAL_CONTEXT = "historical_context"
    BENCHMARK_RETRIEVAL = "benchmark_retrieval"
    COLLECTOR = "collector"
    ANALYST = "analyst"
    STRATEGIST = "strategist"
    CRITIC = "critic"
    SIMILARITY_FILTER = "similarity_filter"
    PERSIST = "persist"

    @property
    def number(self) -> int:
        return list(PipelineStage).index(self) + 1


class ErrorType(str, Enum):
    """Error type classification."""
    VALIDATION_ERROR = "validation_error"
    API_ERROR = "api_error"
    PROVIDER_ERROR = "provider_error"
    CONFIGURATION_ERROR = "configuration_error"
    EXTRACTION_ERROR = "extraction_error"
    EMBEDDING_ERROR = "embedding_error"
    TIMEOUT_ERROR = "timeout_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    INTERNAL_ERROR = "internal_error"


class ChatRole(str, Enum):
    """Roles accepted by the chat contract."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


# =============================================================================
# Chat
# =============================================================================

class ChatMessage(BaseModel):
    """A single chat turn."""
    role: ChatRole
    content: str

    @classmethod
    def user(cls, content: str) -> "ChatMessage":
        return cls(role=ChatRole.USER, content=content)

    @classmethod
    def system(cls, content: str) -> "ChatMessage":
        return cls(role=ChatRole.SYSTEM, content=content)


# =============================================================================
# Module Configuration
# =============================================================================

class ModuleConfig(BaseModel):
    """
    Prompt specialization overrides for one analysis type.

    Immutable. The general config is non-specialized with every override map
    empty, and every agent behaves generically when given it.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    analysis_type: str = AnalysisType.GENERAL.value
    is_specialized: bool = False
    collector_focus: dict[str, Any] = Field(default_factory=dict)
    analyst_keywords: dict[str, Any] = Field(default_factory=dict)
    strategist_config: dict[str, Any] = Field(default_factory=dict)
    critic_config: dict[str, Any] = Field(default_factory=dict)
    temperature_override: Optional[float] = None

    @classmethod
    def general(cls) -> "ModuleConfig":
        return cls()

    def to_dict(self, **kwargs) -> dict[str, Any]:
        return self.model_dump(**kwargs)


# =============================================================================
# Store Data
# =============================================================================

class ProductRecord(BaseModel):
    """A catalog product."""
    id: str
    name: str
    price: float = 0.0
    cost: Optional[float] = None
    stock_quantity: Optional[int] = None
    is_active: bool = True
    categories: list[str] = Field(default_factory=list)
    low_stock_threshold: int = 5

    @property
    def is_out_of_stock(self) -> bool:
        return self.stock_quantity is not None and self.stock_quantity <= 0

    @property
    def has_low_stock(self) -> bool:
        return (
            self.stock_quantity is not None
            and 0 < self.stock_quantity <= self.low_stock_threshold
        )


class OrderItem(BaseModel):
    """A line item inside an order."""
    product_id: Optional[str] = None
    name: str = ""
    quantity: int = 1
    unit_price: float = 0.0


class OrderRecord(BaseModel):
    """A store order."""
    id: str
    created_at: datetime
    total: float = 0.0
    discount: float = 0.0
    payment_status: str = "paid"
    status: str = "open"
    coupon_code: Optional[str] = None
    customer_id: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)

    @property
    def is_paid(self) -> bool:
        return self.payment_status == "paid"

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled" or self.payment_status in ("refunded", "voided")


class CouponRecord(BaseModel):
    """A registered coupon."""
    code: str
    is_active: bool = True
    expires_at: Optional[datetime] = None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (now or datetime.utcnow())


class StoreSnapshot(BaseModel):
    """Store identity plus the raw data the pipeline reads."""
    id: int
    name: str
    url: str = ""
    platform: str = "nuvemshop"
    niche: Optional[str] = None
    niche_subcategory: Optional[str] = None
    goals: dict[str, Any] = Field(default_factory=dict)
    products: list[ProductRecord] = Field(default_factory=list)
    orders: list[OrderRecord] = Field(default_factory=list)
    coupons: list[CouponRecord] = Field(default_factory=list)

    def top_categories(self, limit: int = 10) -> list[str]:
        counts: dict[str, int] = {}
        for product in self.products:
            for category in product.categories:
                counts[category] = counts.get(category, 0) + 1
        ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
        return [name for name, _ in ranked[:limit]]

    def top_product_titles(self, limit: int = 10) -> list[str]:
        return [p.name for p in self.products if p.is_active][:limit]


class PreviousSuggestion(BaseModel):
    """A suggestion persisted by an earlier run."""
    title: str
    description: str = ""
    category: str = "general"
    status: str = SuggestionStatus.PENDING.value


class AnalysisRequest(BaseModel):
    """
    Input bundle for a pipeline run.

    Frozen so that no stage can alter the request after the run starts.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    analysis_id: str = Field(default_factory=lambda: str(uuid4()))
    store: StoreSnapshot
    analysis_type: str = AnalysisType.GENERAL.value
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None
    previous_suggestions: list[PreviousSuggestion] = Field(default_factory=list)
    previous_analyses: list[dict[str, Any]] = Field(default_factory=list)
    store_metrics: Optional[dict[str, Any]] = None


# =============================================================================
# Knowledge
# =============================================================================

class KnowledgeDocument(BaseModel):
    """A retrievable knowledge base entry."""
    title: str
    content: str
    category: str
    niche: str = "general"
    subcategory: Optional[str] = None
    relevance: float = 1.0
    metadata: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Suggestions
# =============================================================================

def as_text(value: Any) -> str:
    """Flatten model output into a string; list items go on separate lines."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple)):
        return "\n".join(as_text(item) for item in value if item is not None)
    return str(value)


class SuggestionDraft(BaseModel):
    """A normalized suggestion produced by the Strategist or Critic."""
    category: str
    title: str = Field(..., max_length=255)
    description: str
    recommended_action: str = ""
    expected_impact: ExpectedImpact = ExpectedImpact.MEDIUM
    target_metrics: list[str] = Field(default_factory=list)
    specific_data: dict[str, Any] = Field(default_factory=dict)
    data_justification: Optional[str] = None
    implementation_time: str = "immediate"
    priority: Optional[int] = None

    @field_validator("title", mode="before")
    @classmethod
    def truncate_title(cls, v: Any) -> str:
        return str(v or "")[:255]

    @field_validator("category", "description", "recommended_action", "implementation_time", mode="before")
    @classmethod
    def flatten_text(cls, v: Any) -> str:
        return as_text(v)

    @field_validator("data_justification", mode="before")
    @classmethod
    def flatten_justification(cls, v: Any) -> Optional[str]:
        return None if v is None else as_text(v)

    @field_validator("target_metrics", mode="before")
    @classmethod
    def coerce_metrics(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            return [v]
        if isinstance(v, dict):
            return [str(k) for k in v]
        if isinstance(v, (list, tuple)):
            return [str(item) for item in v]
        return [str(v)]

    @field_validator("specific_data", mode="before")
    @classmethod
    def coerce_specific_data(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}


class ReviewedSuggestion(BaseModel):
    """A Critic-approved suggestion ready for filtering and persistence."""
    original: dict[str, Any] = Field(default_factory=dict)
    final_version: SuggestionDraft
    quality_score: float = 5.0
    final_priority: int = 1
    embedding: Optional[list[float]] = None


class SuggestionRecord(TimestampMixin):
    """Persisted suggestion columns, shared by the full and lite pipelines."""
    analysis_id: str
    store_id: int
    category: str
    title: str
    description: str
    recommended_action: str = ""
    expected_impact: ExpectedImpact
    priority: int
    status: SuggestionStatus = SuggestionStatus.PENDING
    target_metrics: Optional[list[str]] = None
    specific_data: Optional[dict[str, Any]] = None
    data_justification: Optional[str] = None
    embedding: Optional[list[float]] = None


# =============================================================================
# Agent Contexts
# =============================================================================

class CollectorContext(BaseModel):
    store_name: str
    platform: str = "nuvemshop"
    niche: str = "general"
    subcategory: str = "general"
    store_stats: dict[str, Any] = Field(default_factory=dict)
    store_profile: dict[str, Any] = Field(default_factory=dict)
    store_goals: dict[str, Any] = Field(default_factory=dict)
    previous_analyses: list[dict[str, Any]] = Field(default_factory=list)
    previous_suggestions: list[PreviousSuggestion] = Field(default_factory=list)
    benchmarks: list[KnowledgeDocument] = Field(default_factory=list)
    structured_benchmarks: dict[str, Any] = Field(default_factory=dict)
    module_config: ModuleConfig = Field(default_factory=ModuleConfig.general)


class AnalystContext(BaseModel):
    store_name: str
    niche: str = "general"
    subcategory: str = "general"
    store_data: dict[str, Any] = Field(default_factory=dict)
    collector_context: dict[str, Any] = Field(default_factory=dict)
    benchmarks: list[KnowledgeDocument] = Field(default_factory=list)
    structured_benchmarks: dict[str, Any] = Field(default_factory=dict)
    module_config: ModuleConfig = Field(default_factory=ModuleConfig.general)


class StrategistContext(BaseModel):
    store_name: str
    niche: str = "general"
    subcategory: str = "general"
    analysis: dict[str, Any] = Field(default_factory=dict)
    collector_context: dict[str, Any] = Field(default_factory=dict)
    store_profile: dict[str, Any] = Field(default_factory=dict)
    strategies: list[KnowledgeDocument] = Field(default_factory=list)
    previous_suggestions: list[PreviousSuggestion] = Field(default_factory=list)
    saturated_themes: dict[str, int] = Field(default_factory=dict)
    module_config: ModuleConfig = Field(default_factory=ModuleConfig.general)


class CriticContext(BaseModel):
    store_name: str
    niche: str = "general"
    suggestions: list[dict[str, Any]] = Field(default_factory=list)
    analysis: dict[str, Any] = Field(default_factory=dict)
    store_stats: dict[str, Any] = Field(default_factory=dict)
    previous_suggestions: list[PreviousSuggestion] = Field(default_factory=list)
    module_config: ModuleConfig = Field(default_factory=ModuleConfig.general)


class ProfileContext(BaseModel):
    store_name: str
    platform: str = "nuvemshop"
    niche: str = "general"
    subcategory: str = "general"
    store_url: str = ""
    store_stats: dict[str, Any] = Field(default_factory=dict)
    benchmarks: list[KnowledgeDocument] = Field(default_factory=list)
    structured_benchmarks: dict[str, Any] = Field(default_factory=dict)
    store_goals: dict[str, Any] = Field(default_factory=dict)


class LiteAnalystContext(BaseModel):
    store_name: str
    niche: str = "general"
    metrics: dict[str, Any] = Field(default_factory=dict)


class LiteStrategistContext(BaseModel):
    store_name: str
    niche: str = "general"
    metrics: dict[str, Any] = Field(default_factory=dict)
    analysis: dict[str, Any] = Field(default_factory=dict)
    previous_titles: list[str] = Field(default_factory=list)


# =============================================================================
# Pipeline Context
# =============================================================================

class ContextOverwriteError(ValueError):
    """Raised when a stage tries to replace another stage's output."""


class PipelineContext(BaseModel):
    """
    Append-only accumulator threaded through the pipeline stages.

    Each stage fills its own fields through ``with_stage``, which returns a
    new context and refuses to replace a field that is already populated.
    """

    model_config = ConfigDict(frozen=True)

    niche: Optional[str] = None
    subcategory: Optional[str] = None
    structured_benchmarks: Optional[dict[str, Any]] = None
    previous_suggestions: Optional[list[PreviousSuggestion]] = None
    saturated_themes: Optional[dict[str, int]] = None
    benchmarks: Optional[list[KnowledgeDocument]] = None
    strategies: Optional[list[KnowledgeDocument]] = None
    store_stats: Optional[dict[str, Any]] = None
    store_data: Optional[dict[str, Any]] = None
    store_profile: Optional[dict[str, Any]] = None
    collector_context: Optional[dict[str, Any]] = None
    analyst_metrics: Optional[dict[str, Any]] = None
    strategist_output: Optional[dict[str, Any]] = None
    critic_output: Optional[dict[str, Any]] = None
    approved_suggestions: Optional[list[ReviewedSuggestion]] = None
    filtered_suggestions: Optional[list[ReviewedSuggestion]] = None

    def with_stage(self, **fields: Any) -> "PipelineContext":
        for name, _ in fields.items():
            if name not in type(self).model_fields:
                raise ContextOverwriteError(f"Unknown context field: {name}")
            if getattr(self, name) is not None:
                raise ContextOverwriteError(f"Context field already set: {name}")
        return self.model_copy(update=fields)


# =============================================================================
# Results
# =============================================================================

class Alert(BaseModel):
    type: str
    title: str
    message: str = ""


class Opportunity(BaseModel):
    title: str
    description: str = ""
    type: str = "opportunity"
    potential_revenue: Optional[Any] = None


class AnalysisSummary(BaseModel):
    health_score: float = 50
    health_status: str = "attention"
    main_insight: str = ""
    pipeline: Optional[str] = None


class AnalysisRecord(TimestampMixin):
    """Persisted analysis outcome."""
    analysis_id: str
    store_id: int
    status: AnalysisStatus = AnalysisStatus.PENDING
    summary: Optional[AnalysisSummary] = None
    alerts: list[Alert] = Field(default_factory=list)
    opportunities: list[Opportunity] = Field(default_factory=list)
    failed_stage: Optional[str] = None
    error: Optional[str] = None
    error_details: dict[str, Any] = Field(default_factory=dict)


class PipelineResult(BaseModel):
    """Return value of a pipeline run."""
    analysis_id: str
    overall_health: dict[str, Any] = Field(default_factory=dict)
    metrics: dict[str, Any] = Field(default_factory=dict)
    suggestions_count: int = 0
    niche: str = "general"
    pipeline: str = "full"
