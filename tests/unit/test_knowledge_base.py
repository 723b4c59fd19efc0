from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from store_insights.models.schemas import KnowledgeDocument
from store_insights.services.embedding_service import EmbeddingError, EmbeddingService
from store_insights.services.knowledge_base import (
    NO_KNOWLEDGE_MESSAGE,
    KnowledgeBase,
    load_seed_documents,
)
from store_insights.services.vector_store import InMemoryVectorStore


@pytest_asyncio.fixture
async def seeded_kb():
    kb = KnowledgeBase()
    await kb.load_documents(load_seed_documents())
    return kb


def _keyword_vector(text: str) -> list[float]:
    return [1.0, 0.0] if "dress" in text.lower() else [0.0, 1.0]


@pytest.fixture
def vector_kb(mock_settings):
    mock_settings.provider_api_key.return_value = "k"
    embeddings = EmbeddingService(mock_settings, InMemoryVectorStore())
    embeddings.embed = AsyncMock(side_effect=_keyword_vector)
    embeddings.embed_for_query = AsyncMock(side_effect=_keyword_vector)
    return KnowledgeBase(embeddings=embeddings)


# =============================================================================
# Text retrieval
# =============================================================================

def test_seed_documents_load():
    documents = load_seed_documents()
    assert documents
    assert {d.category for d in documents} >= {"benchmark", "strategy"}


@pytest.mark.asyncio
async def test_text_search_prefers_niche_documents(seeded_kb):
    results = await seeded_kb.search_benchmarks("fashion")
    assert results
    assert results[0].niche == "fashion"
    assert all(d.niche in ("fashion", "general") for d in results)
    assert all(d.category == "benchmark" for d in results)
    assert all(d.relevance == 1.0 for d in results)


@pytest.mark.asyncio
async def test_unknown_category_is_rejected(seeded_kb):
    with pytest.raises(ValueError):
        await seeded_kb.search("anything", "recipes")


@pytest.mark.asyncio
async def test_relevant_strategies_for_inventory_problems(seeded_kb):
    metrics = {"inventory_alerts": {"out_of_stock": 5, "low_stock": 0}}
    strategies = await seeded_kb.get_relevant_strategies(metrics, "fashion")
    titles = [d.title for d in strategies]
    assert strategies
    assert len(strategies) <= 5
    assert len(titles) == len(set(titles))


@pytest.mark.asyncio
async def test_relevant_strategies_for_healthy_general_store(seeded_kb):
    metrics = {"customer_insights": {"repeat_purchase_rate": 40}, "trends": {"revenue_trend": "growth"}}
    assert await seeded_kb.get_relevant_strategies(metrics) == []


def test_format_for_prompt():
    assert KnowledgeBase.format_for_prompt([]) == NO_KNOWLEDGE_MESSAGE
    doc = KnowledgeDocument(title="T", content="C", category="strategy")
    assert KnowledgeBase.format_for_prompt([doc]) == "### T\nC"


def test_structured_benchmarks():
    benchmarks = KnowledgeBase().get_structured_benchmarks("fashion")
    assert benchmarks["niche"] == "fashion"
    assert benchmarks["niche_label"] == "Fashion & Apparel"
    assert benchmarks["subcategory"] == "general"

    unknown = KnowledgeBase().get_structured_benchmarks("spaceships")
    assert unknown["niche"] == "spaceships"
    assert unknown["subcategory_label"] is None


# =============================================================================
# Niche identification
# =============================================================================

@pytest.mark.parametrize("name,categories,expected", [
    ("Bella Moda Boutique", [], "fashion"),
    ("Acme", ["Shampoo", "Conditioner"], "beauty"),
    ("Acme", ["Misc"], "general"),
])
def test_identify_niche_by_keywords(name, categories, expected):
    assert KnowledgeBase().identify_niche_by_keywords(name, categories) == expected


def test_identify_subcategory():
    kb = KnowledgeBase()
    context = kb.build_store_context("Shop", ["Dresses"], ["Linen Dress"])
    assert context == "Store: Shop\nCategories: Dresses\nProducts: Linen Dress"
    assert kb.identify_subcategory("fashion", context.lower()) == "womens"
    assert kb.identify_subcategory("fashion", "store: shop") == "general"


@pytest.mark.asyncio
async def test_identify_niche_without_embeddings_is_general():
    kb = KnowledgeBase()
    assert await kb.identify_niche_and_subcategory("Bella Moda", ["Dresses"], []) == ("general", "general")


@pytest.mark.asyncio
async def test_identify_niche_by_vector_vote(vector_kb):
    await vector_kb.load_documents([
        KnowledgeDocument(title="Dress trends", content="dresses", category="strategy", niche="fashion"),
        KnowledgeDocument(title="Dress sizing", content="dress fit", category="benchmark", niche="fashion"),
        KnowledgeDocument(title="Skincare", content="serums", category="strategy", niche="beauty"),
        KnowledgeDocument(title="General dress", content="dresses", category="strategy", niche="general"),
    ])
    niche, subcategory = await vector_kb.identify_niche_and_subcategory(
        "Bella", ["Dresses"], ["Linen Dress"]
    )
    assert (niche, subcategory) == ("fashion", "womens")


@pytest.mark.asyncio
async def test_vector_search_ranks_by_similarity(vector_kb):
    await vector_kb.load_documents([
        KnowledgeDocument(title="Skincare routine", content="serums", category="strategy", niche="fashion"),
        KnowledgeDocument(title="Dress bundles", content="dresses", category="strategy", niche="fashion"),
        KnowledgeDocument(title="Other niche dress", content="dresses", category="strategy", niche="beauty"),
    ])
    results = await vector_kb.search("dress ideas", "strategy", niche="fashion")
    assert [d.title for d in results] == ["Dress bundles", "Skincare routine"]
    assert results[0].relevance == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_vector_search_falls_back_to_text(vector_kb):
    await vector_kb.load_documents([
        KnowledgeDocument(title="Dress bundles", content="dresses", category="strategy", niche="fashion"),
    ])
    with patch.object(vector_kb.embeddings, "embed_for_query", AsyncMock(side_effect=EmbeddingError("down"))):
        results = await vector_kb.search("dress ideas", "strategy", niche="fashion")
    assert [d.title for d in results] == ["Dress bundles"]
    assert results[0].relevance == 1.0


@pytest.mark.asyncio
async def test_documents_kept_when_embedding_fails(vector_kb):
    vector_kb.embeddings.embed = AsyncMock(side_effect=EmbeddingError("down"))
    await vector_kb.add(KnowledgeDocument(title="T", content="C", category="case"))
    assert len(vector_kb.documents) == 1
