"""
Text embeddings and semantic similarity checks.

Supports Gemini (``embedContent`` with document and query task types) and
OpenAI (``/v1/embeddings``) backends. Near-duplicate detection looks up the
single nearest stored suggestion vector within the same store.

Example:
    >>> service = EmbeddingService(vector_store=InMemoryVectorStore())
    >>> vector = await service.embed("Launch a loyalty program")
    >>> await service.is_too_similar(vector, scope_id=42)
    False
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from store_insights.config.settings import Settings, get_settings
from store_insights.models.schemas import ErrorType
from store_insights.services.vector_store import (
    SUGGESTIONS_COLLECTION,
    InMemoryVectorStore,
    Neighbour,
    VectorStore,
    cosine_similarity,
)
from store_insights.utils.logger import get_logger
from store_insights.utils.retry import AppError

logger = get_logger(__name__)

DEFAULT_MODELS = {
    "gemini": "gemini-embedding-001",
    "openai": "text-embedding-3-small",
}

DEFAULT_DIMENSIONS = {
    "gemini": 768,
    "openai": 1536,
}


class EmbeddingError(AppError):
    """Embedding generation or comparison failed."""

    error_type = ErrorType.EMBEDDING_ERROR


class EmbeddingService:
    """
    Embedding generation and similarity lookup.

    Attributes:
        settings: Application settings
        vector_store: Store holding suggestion and knowledge vectors
    """

    GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
    OPENAI_URL = "https://api.openai.com/v1/embeddings"

    def __init__(
        self,
        settings: Optional[Settings] = None,
        vector_store: Optional[VectorStore] = None,
    ):
        self.settings = settings or get_settings()
        self.vector_store = vector_store or InMemoryVectorStore()
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def provider(self) -> str:
        return self.settings.embedding_provider

    @property
    def model(self) -> str:
        return self.settings.embedding_model or DEFAULT_MODELS.get(self.provider, "")

    @property
    def dimensions(self) -> int:
        return self.settings.embedding_dimensions or DEFAULT_DIMENSIONS.get(self.provider, 768)

    @property
    def is_configured(self) -> bool:
        return self.provider in DEFAULT_MODELS and bool(
            self.settings.provider_api_key(self.provider)
        )

    async def connect(self) -> None:
        if self._client is None:
            timeout = float(self.settings.embedding_timeout_seconds)
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=timeout, write=10.0, pool=5.0),
            )

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    # -------------------------------------------------------------------------
    # Embedding
    # -------------------------------------------------------------------------

    async def embed(self, text: str) -> list[float]:
        """Embed text for storage (document mode)."""
        return await self._embed(text, task_type="RETRIEVAL_DOCUMENT")

    async def embed_for_query(self, text: str) -> list[float]:
        """Embed text for retrieval (query mode where the backend has one)."""
        return await self._embed(text, task_type="RETRIEVAL_QUERY")

    async def _embed(self, text: str, task_type: str) -> list[float]:
        if self.provider not in DEFAULT_MODELS:
            raise EmbeddingError(f"Unsupported embedding provider: {self.provider}")
        api_key = self.settings.provider_api_key(self.provider)
        if not api_key:
            raise EmbeddingError(f"API key is not configured for {self.provider} embeddings.")

        if self.provider == "gemini":
            data = await self._request(
                f"{self.GEMINI_BASE_URL}/models/{self.model}:embedContent",
                {
                    "model": f"models/{self.model}",
                    "content": {"parts": [{"text": text}]},
                    "taskType": task_type,
                    "outputDimensionality": self.dimensions,
                },
                params={"key": api_key},
            )
            vector = (data.get("embedding") or {}).get("values") or []
        else:
            data = await self._request(
                self.OPENAI_URL,
                {"model": self.model, "input": text},
                headers={"Authorization": f"Bearer {api_key}"},
            )
            items = data.get("data") or [{}]
            vector = items[0].get("embedding") or []

        if not vector:
            raise EmbeddingError(f"Empty embedding returned from {self.provider}")

        logger.debug(
            "Embedding generated",
            provider=self.provider,
            model=self.model,
            task_type=task_type,
            dimensions=len(vector),
            text_length=len(text),
        )
        return [float(v) for v in vector]

    @retry(
        retry=retry_if_exception_type((httpx.TimeoutException, httpx.NetworkError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request(self, url: str, payload: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        if not self._client:
            await self.connect()
        response = await self._client.post(url, json=payload, **kwargs)
        if response.status_code >= 400:
            logger.error(
                "Embedding request failed",
                provider=self.provider,
                status_code=response.status_code,
                body=response.text[:200],
            )
            raise EmbeddingError(
                f"Error generating {self.provider} embedding (HTTP {response.status_code})"
            )
        return response.json()

    # -------------------------------------------------------------------------
    # Similarity
    # -------------------------------------------------------------------------

    @staticmethod
    def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
        try:
            return cosine_similarity(a, b)
        except ValueError as e:
            raise EmbeddingError(str(e)) from e

    async def nearest_suggestion(self, vector: Sequence[float], scope_id: Any) -> Optional[Neighbour]:
        hits = await self.vector_store.nearest(
            SUGGESTIONS_COLLECTION, vector, limit=1, scope=str(scope_id)
        )
        return hits[0] if hits else None

    async def is_too_similar(
        self,
        vector: Sequence[float],
        scope_id: Any,
        threshold: Optional[float] = None,
    ) -> bool:
        """
        True iff the nearest stored vector in ``scope_id`` has
        similarity strictly above ``threshold``.
        """
        threshold = self.settings.similarity_threshold if threshold is None else threshold
        nearest = await self.nearest_suggestion(vector, scope_id)
        if nearest is None:
            return False

        similarity = nearest.similarity
        too_similar = similarity > threshold
        if too_similar:
            logger.info(
                "Similar suggestion found",
                scope_id=str(scope_id),
                similarity=round(similarity, 4),
                threshold=threshold,
                existing_title=nearest.record.payload.get("title"),
            )
        return too_similar

    async def remember_suggestion(
        self,
        vector: Sequence[float],
        scope_id: Any,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append a persisted suggestion's vector for future checks."""
        await self.vector_store.add(SUGGESTIONS_COLLECTION, vector, scope=str(scope_id), payload=payload)

    # -------------------------------------------------------------------------
    # Storage literals
    # -------------------------------------------------------------------------

    @staticmethod
    def format_for_storage(vector: Sequence[float]) -> str:
        """Render a vector as a ``[a,b,c]`` literal."""
        return "[" + ",".join(repr(float(v)) for v in vector) + "]"

    @staticmethod
    def parse_from_storage(literal: str) -> list[float]:
        body = (literal or "").strip().lstrip("[").rstrip("]")
        if not body.strip():
            return []
        try:
            return [float(part) for part in body.split(",")]
        except ValueError as e:
            raise EmbeddingError(f"Invalid vector literal: {literal[:50]}") from e


__all__ = ["EmbeddingError", "EmbeddingService", "DEFAULT_MODELS", "DEFAULT_DIMENSIONS"]
