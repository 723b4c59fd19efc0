import math
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from store_insights.services.embedding_service import EmbeddingError, EmbeddingService
from store_insights.services.vector_store import SUGGESTIONS_COLLECTION, InMemoryVectorStore


@pytest.fixture
def store():
    return InMemoryVectorStore()


@pytest.fixture
def service(mock_settings, store):
    mock_settings.provider_api_key.return_value = "embed-key"
    return EmbeddingService(mock_settings, store)


def _at_similarity(similarity: float) -> list[float]:
    """Unit vector whose cosine with [1, 0] is ``similarity``."""
    return [similarity, math.sqrt(1 - similarity ** 2)]


def test_configuration(mock_settings):
    service = EmbeddingService(mock_settings)
    assert not service.is_configured
    assert service.model == "gemini-embedding-001"
    assert service.dimensions == 768

    mock_settings.provider_api_key.return_value = "k"
    assert service.is_configured

    mock_settings.embedding_provider = "cohere"
    assert not service.is_configured


# =============================================================================
# Similarity
# =============================================================================

@pytest.mark.asyncio
async def test_is_too_similar_threshold(service):
    await service.remember_suggestion([1.0, 0.0], scope_id=42, payload={"title": "Loyalty"})

    assert await service.is_too_similar(_at_similarity(0.90), scope_id=42)
    assert not await service.is_too_similar(_at_similarity(0.80), scope_id=42)


@pytest.mark.asyncio
async def test_is_too_similar_is_strict(service):
    await service.remember_suggestion([1.0, 0.0], scope_id=42)
    assert not await service.is_too_similar([1.0, 0.0], scope_id=42, threshold=1.0)
    assert await service.is_too_similar([1.0, 0.0], scope_id=42, threshold=0.99)


@pytest.mark.asyncio
async def test_is_too_similar_is_scoped_per_store(service):
    await service.remember_suggestion([1.0, 0.0], scope_id=1)
    assert not await service.is_too_similar([1.0, 0.0], scope_id=2)


@pytest.mark.asyncio
async def test_nearest_suggestion_without_history(service):
    assert await service.nearest_suggestion([1.0, 0.0], scope_id=7) is None


def test_cosine_similarity_dimension_mismatch():
    with pytest.raises(EmbeddingError):
        EmbeddingService.cosine_similarity([1.0], [1.0, 0.0])


# =============================================================================
# Embedding requests
# =============================================================================

@pytest.mark.asyncio
async def test_gemini_embedding_request(service):
    response = {"embedding": {"values": [0.1, 0.2, 0.3]}}
    with patch.object(service, "_request", AsyncMock(return_value=response)) as request:
        assert await service.embed_for_query("bundle dresses") == [0.1, 0.2, 0.3]

    url, payload = request.call_args.args
    assert url.endswith("/models/gemini-embedding-001:embedContent")
    assert payload["taskType"] == "RETRIEVAL_QUERY"
    assert payload["outputDimensionality"] == 768
    assert request.call_args.kwargs["params"] == {"key": "embed-key"}


@pytest.mark.asyncio
async def test_openai_embedding_request(service, mock_settings):
    mock_settings.embedding_provider = "openai"
    response = {"data": [{"embedding": [1, 2]}]}
    with patch.object(service, "_request", AsyncMock(return_value=response)) as request:
        assert await service.embed("text") == [1.0, 2.0]

    url, payload = request.call_args.args
    assert url == EmbeddingService.OPENAI_URL
    assert payload == {"model": "text-embedding-3-small", "input": "text"}
    assert request.call_args.kwargs["headers"] == {"Authorization": "Bearer embed-key"}


@pytest.mark.asyncio
async def test_empty_embedding_is_an_error(service):
    with patch.object(service, "_request", AsyncMock(return_value={"embedding": {}})):
        with pytest.raises(EmbeddingError, match="Empty embedding"):
            await service.embed("text")


@pytest.mark.asyncio
async def test_embed_without_key_is_an_error(mock_settings):
    service = EmbeddingService(mock_settings)
    with pytest.raises(EmbeddingError, match="not configured"):
        await service.embed("text")


@pytest.mark.asyncio
async def test_http_error_is_an_embedding_error(service):
    service._client = MagicMock()
    service._client.post = AsyncMock(return_value=httpx.Response(500, text="boom"))
    with pytest.raises(EmbeddingError, match="HTTP 500"):
        await service.embed("text")
    service._client.post.assert_awaited_once()


@pytest.mark.asyncio
async def test_disconnect_without_client(service):
    await service.disconnect()
    assert service._client is None


# =============================================================================
# Storage literals
# =============================================================================

def test_format_for_storage():
    assert EmbeddingService.format_for_storage([0.1, 2]) == "[0.1,2.0]"


def test_parse_from_storage():
    assert EmbeddingService.parse_from_storage("[0.1,2.0]") == [0.1, 2.0]
    assert EmbeddingService.parse_from_storage(" [ 1, -0.5 ] ") == [1.0, -0.5]
    assert EmbeddingService.parse_from_storage("[]") == []
    assert EmbeddingService.parse_from_storage("") == []
    with pytest.raises(EmbeddingError):
        EmbeddingService.parse_from_storage("[a,b]")


@pytest.mark.asyncio
async def test_remember_suggestion_appends(service, store):
    await service.remember_suggestion([0.5, 0.5], scope_id=3, payload={"title": "A"})
    await service.remember_suggestion([0.5, 0.5], scope_id=3, payload={"title": "A"})
    assert await store.count(SUGGESTIONS_COLLECTION, scope="3") == 2
