import pytest
from pydantic import ValidationError

from store_insights.models.schemas import (
    AnalysisRequest,
    AnalysisType,
    ContextOverwriteError,
    ExpectedImpact,
    ModuleConfig,
    PipelineContext,
    PipelineStage,
    ProductRecord,
    StoreSnapshot,
    SuggestionDraft,
    SuggestionRecord,
    as_text,
)


@pytest.mark.parametrize("raw,expected", [
    ("high", ExpectedImpact.HIGH),
    ("HIGH", ExpectedImpact.HIGH),
    (" Alta ", ExpectedImpact.HIGH),
    ("médio", ExpectedImpact.MEDIUM),
    ("mÃ©dio", ExpectedImpact.MEDIUM),
    ("Média", ExpectedImpact.MEDIUM),
    ("moderate", ExpectedImpact.MEDIUM),
    ("baixo", ExpectedImpact.LOW),
    ("low", ExpectedImpact.LOW),
])
def test_expected_impact_parse(raw, expected):
    assert ExpectedImpact.parse(raw) is expected


def test_expected_impact_parse_defaults():
    assert ExpectedImpact.parse("huge") is ExpectedImpact.LOW
    assert ExpectedImpact.parse(None) is ExpectedImpact.LOW
    assert ExpectedImpact.parse("", default=ExpectedImpact.MEDIUM) is ExpectedImpact.MEDIUM
    assert ExpectedImpact.parse(ExpectedImpact.HIGH) is ExpectedImpact.HIGH


def test_pipeline_context_is_append_only():
    context = PipelineContext()
    updated = context.with_stage(niche="fashion", subcategory="womens")

    assert context.niche is None
    assert updated.niche == "fashion"

    with pytest.raises(ContextOverwriteError, match="niche"):
        updated.with_stage(niche="beauty")

    with pytest.raises(ContextOverwriteError, match="Unknown"):
        updated.with_stage(not_a_field=1)


def test_pipeline_context_is_frozen():
    context = PipelineContext()
    with pytest.raises(ValidationError):
        context.niche = "fashion"


def test_analysis_request_is_frozen(sample_store):
    request = AnalysisRequest(store=sample_store)
    assert request.analysis_id
    assert request.analysis_type == "general"
    with pytest.raises(ValidationError):
        request.analysis_type = "financial"


def test_suggestion_draft_coercion():
    draft = SuggestionDraft(
        category="conversion",
        title="x" * 300,
        description="d",
        target_metrics="conversion_rate",
        specific_data=["not", "a", "dict"],
    )
    assert len(draft.title) == 255
    assert draft.target_metrics == ["conversion_rate"]
    assert draft.specific_data == {}
    assert draft.expected_impact == "medium"


def test_suggestion_draft_flattens_structured_text():
    draft = SuggestionDraft(
        category="conversion",
        title="Bundle pairs",
        description=["Low attach rate", "on accessories"],
        recommended_action=["1. Pick pairs", "2. Publish bundle"],
        data_justification={"orders": 12},
        implementation_time=7,
    )
    assert draft.description == "Low attach rate\non accessories"
    assert draft.recommended_action == "1. Pick pairs\n2. Publish bundle"
    assert draft.data_justification == "{'orders': 12}"
    assert draft.implementation_time == "7"


@pytest.mark.parametrize("raw,expected", [
    (None, ""),
    ("text", "text"),
    (["a", None, "b"], "a\nb"),
    ([["nested"], 2], "nested\n2"),
    (3.5, "3.5"),
])
def test_as_text(raw, expected):
    assert as_text(raw) == expected


def test_suggestion_record_serializes_created_at():
    record = SuggestionRecord(
        analysis_id="a",
        store_id=1,
        category="general",
        title="t",
        description="d",
        expected_impact=ExpectedImpact.HIGH,
        priority=1,
    )
    dumped = record.to_dict()
    assert dumped["created_at"].endswith("Z")
    assert dumped["status"] == "pending"
    assert dumped["expected_impact"] == "high"


def test_pipeline_stage_numbers():
    assert PipelineStage.NICHE_IDENTIFICATION.number == 1
    assert PipelineStage.CRITIC.number == 7
    assert PipelineStage.PERSIST.number == 9


def test_available_analysis_types():
    available = [t.value for t in AnalysisType.available()]
    assert available == ["general", "financial", "conversion", "competitors"]
    assert AnalysisType.CAMPAIGNS.label == "Campaign Analysis"


def test_general_module_config_is_empty():
    config = ModuleConfig.general()
    assert not config.is_specialized
    assert config.collector_focus == {}
    assert config.temperature_override is None


def test_product_stock_flags():
    assert ProductRecord(id="1", name="a", stock_quantity=0).is_out_of_stock
    assert ProductRecord(id="1", name="a", stock_quantity=3).has_low_stock
    untracked = ProductRecord(id="1", name="a")
    assert not untracked.is_out_of_stock
    assert not untracked.has_low_stock


def test_store_top_categories():
    store = StoreSnapshot(
        id=1,
        name="Shop",
        products=[
            ProductRecord(id="1", name="a", categories=["Dresses", "Women"]),
            ProductRecord(id="2", name="b", categories=["Dresses"]),
            ProductRecord(id="3", name="c", categories=["Shoes"], is_active=False),
        ],
    )
    assert store.top_categories(1) == ["Dresses"]
    assert store.top_product_titles() == ["a", "b"]
