"""
Niche-aware knowledge retrieval.

Documents (benchmarks, strategies, success cases, seasonality notes) are
retrieved by vector similarity when embeddings are configured and the
category has vectors, and by attribute filtering otherwise. The text path is
a supported mode, not an error path.

Also identifies a store's niche and subcategory: a position-weighted vote
over the nearest knowledge documents picks the niche, then keyword scoring
against the niche's subcategory table picks the subcategory.

Example:
    >>> kb = KnowledgeBase(embeddings=EmbeddingService())
    >>> await kb.load_documents(load_seed_documents())
    >>> docs = await kb.search_strategies("beauty")
    >>> print(kb.format_for_prompt(docs))
"""

from __future__ import annotations

import json
from collections import defaultdict
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Optional

import httpx

from store_insights.config.niches import GENERAL, NicheCatalog, get_niche_catalog
from store_insights.models.schemas import KnowledgeDocument
from store_insights.services.embedding_service import EmbeddingError, EmbeddingService
from store_insights.services.vector_store import KNOWLEDGE_COLLECTION, VectorRecord
from store_insights.utils.logger import get_logger

logger = get_logger(__name__)

SEED_DOCUMENTS_PATH = Path(__file__).resolve().parent.parent / "config" / "knowledge.json"

NO_KNOWLEDGE_MESSAGE = "No specific knowledge available for this context."

# Nearest documents considered when voting on a niche.
NICHE_VOTE_NEIGHBOURS = 10
MAX_RELEVANT_STRATEGIES = 5


class KnowledgeCategory(str, Enum):
    BENCHMARK = "benchmark"
    STRATEGY = "strategy"
    CASE = "case"
    SEASONALITY = "seasonality"


def load_seed_documents(path: Optional[Path] = None) -> list[KnowledgeDocument]:
    """Load knowledge documents from a JSON file."""
    source = Path(path) if path else SEED_DOCUMENTS_PATH
    data = json.loads(source.read_text(encoding="utf-8"))
    return [KnowledgeDocument.model_validate(item) for item in data.get("documents", [])]


class KnowledgeBase:
    """
    Knowledge document store with vector and text retrieval.

    Attributes:
        embeddings: Embedding service (optional; text search only without it)
        catalog: Niche configuration data
    """

    def __init__(
        self,
        embeddings: Optional[EmbeddingService] = None,
        catalog: Optional[NicheCatalog] = None,
    ):
        self.embeddings = embeddings
        self.catalog = catalog or get_niche_catalog()
        self._documents: list[KnowledgeDocument] = []

    @property
    def documents(self) -> list[KnowledgeDocument]:
        return list(self._documents)

    @property
    def vectors_enabled(self) -> bool:
        return self.embeddings is not None and self.embeddings.is_configured

    # =========================================================================
    # Writing
    # =========================================================================

    async def add(self, document: KnowledgeDocument) -> KnowledgeDocument:
        """Add a document, embedding it when embeddings are configured."""
        self._documents.append(document)
        index = len(self._documents) - 1

        if self.vectors_enabled:
            try:
                vector = await self.embeddings.embed(f"{document.title} {document.content}")
            except (EmbeddingError, httpx.HTTPError) as e:
                logger.warning(
                    "Knowledge document stored without embedding",
                    title=document.title,
                    error=str(e),
                )
                return document
            await self.embeddings.vector_store.add(
                KNOWLEDGE_COLLECTION,
                vector,
                scope=document.category,
                payload={"index": index, "niche": document.niche, "subcategory": document.subcategory},
            )
        return document

    async def load_documents(self, documents: Iterable[KnowledgeDocument]) -> int:
        count = 0
        for document in documents:
            await self.add(document)
            count += 1
        logger.info("Knowledge documents loaded", count=count, vectors=self.vectors_enabled)
        return count

    # =========================================================================
    # Search
    # =========================================================================

    async def search(
        self,
        query: str,
        category: str,
        niche: Optional[str] = None,
        subcategory: Optional[str] = None,
        limit: int = 5,
    ) -> list[KnowledgeDocument]:
        """
        Retrieve documents for a category, most relevant first.

        Vector search when available, attribute filtering otherwise.
        """
        category = KnowledgeCategory(category).value
        if self.vectors_enabled and await self.embeddings.vector_store.count(
            KNOWLEDGE_COLLECTION, scope=category
        ):
            try:
                return await self._vector_search(query, category, niche, subcategory, limit)
            except (EmbeddingError, httpx.HTTPError) as e:
                logger.warning(
                    "Vector search unavailable, using text search",
                    category=category,
                    error=str(e),
                )
        return self._text_search(category, niche, subcategory, limit)

    async def _vector_search(
        self,
        query: str,
        category: str,
        niche: Optional[str],
        subcategory: Optional[str],
        limit: int,
    ) -> list[KnowledgeDocument]:
        vector = await self.embeddings.embed_for_query(query)

        def matches(record: VectorRecord) -> bool:
            if niche and record.payload.get("niche") not in (niche, GENERAL):
                return False
            if subcategory and record.payload.get("subcategory") not in (subcategory, None):
                return False
            return True

        hits = await self.embeddings.vector_store.nearest(
            KNOWLEDGE_COLLECTION,
            vector,
            limit=len(self._documents) or 1,
            scope=category,
            where=matches,
        )
        if subcategory:
            hits.sort(key=lambda h: (h.record.payload.get("subcategory") != subcategory, h.distance))

        results = []
        for hit in hits[:limit]:
            document = self._documents[hit.record.payload["index"]]
            results.append(document.model_copy(update={"relevance": round(1.0 - hit.distance, 4)}))
        return results

    def _text_search(
        self,
        category: str,
        niche: Optional[str],
        subcategory: Optional[str],
        limit: int,
    ) -> list[KnowledgeDocument]:
        candidates = [d for d in self._documents if d.category == category]
        if niche:
            candidates = [d for d in candidates if d.niche in (niche, GENERAL)]
        if subcategory:
            candidates = [d for d in candidates if d.subcategory in (subcategory, None)]

        candidates.sort(
            key=lambda d: (
                bool(niche) and d.niche != niche,
                bool(subcategory) and d.subcategory != subcategory,
            )
        )
        return [d.model_copy(update={"relevance": 1.0}) for d in candidates[:limit]]

    async def search_benchmarks(self, niche: str, subcategory: Optional[str] = None) -> list[KnowledgeDocument]:
        query = f"benchmarks e-commerce {niche} metrics conversion average ticket"
        return await self.search(query, KnowledgeCategory.BENCHMARK.value, niche, subcategory)

    async def search_strategies(self, niche: str, topic: str = "") -> list[KnowledgeDocument]:
        query = f"strategies increase sales {topic or niche} e-commerce"
        return await self.search(query, KnowledgeCategory.STRATEGY.value, niche)

    async def search_cases(self, niche: str) -> list[KnowledgeDocument]:
        return await self.search(f"success cases e-commerce {niche}", KnowledgeCategory.CASE.value, niche)

    async def search_seasonality(self) -> list[KnowledgeDocument]:
        query = "e-commerce calendar dates promotions seasonality"
        return await self.search(query, KnowledgeCategory.SEASONALITY.value)

    @staticmethod
    def format_for_prompt(results: list[KnowledgeDocument]) -> str:
        if not results:
            return NO_KNOWLEDGE_MESSAGE
        return "\n\n".join(f"### {doc.title}\n{doc.content}" for doc in results)

    async def get_relevant_strategies(
        self,
        store_metrics: dict[str, Any],
        niche: str = GENERAL,
    ) -> list[KnowledgeDocument]:
        """Strategies for the problems the store's metrics reveal."""
        strategies: list[KnowledgeDocument] = []

        repeat_rate = (store_metrics.get("customer_insights") or {}).get("repeat_purchase_rate")
        if repeat_rate is not None and repeat_rate < 15:
            strategies += (await self.search_strategies(niche, "retention customer loyalty"))[:2]

        alerts = store_metrics.get("inventory_alerts") or {}
        if alerts.get("out_of_stock", 0) > 3 or alerts.get("low_stock", 0) > 5:
            strategies += (await self.search_strategies(niche, "inventory management stock"))[:2]

        trend = (store_metrics.get("trends") or {}).get("revenue_trend")
        if trend in ("decline", "strong_decline"):
            strategies += (await self.search_strategies(niche, "increase sales revenue growth"))[:2]

        if niche != GENERAL:
            strategies += (await self.search_strategies(niche))[:2]

        unique: dict[str, KnowledgeDocument] = {}
        for doc in strategies:
            unique.setdefault(doc.title, doc)
        return list(unique.values())[:MAX_RELEVANT_STRATEGIES]

    def get_structured_benchmarks(self, niche: str, subcategory: Optional[str] = None) -> dict[str, Any]:
        """Benchmark ranges from configuration data."""
        benchmarks = self.catalog.benchmarks_for(niche, subcategory)
        subcategories = self.catalog.subcategories_for(niche)
        return {
            "niche": niche,
            "niche_label": self.catalog.niche_label(niche),
            "subcategory": subcategory or GENERAL,
            "subcategory_label": (
                subcategories[subcategory].label if subcategory in subcategories else None
            ),
            **benchmarks,
        }

    # =========================================================================
    # Niche Identification
    # =========================================================================

    @staticmethod
    def build_store_context(
        store_name: str,
        categories: list[str],
        product_titles: list[str],
    ) -> str:
        parts = [f"Store: {store_name}"]
        if categories:
            parts.append("Categories: " + ", ".join(categories))
        if product_titles:
            parts.append("Products: " + ", ".join(product_titles))
        return "\n".join(parts)

    async def identify_niche_and_subcategory(
        self,
        store_name: str,
        categories: list[str],
        product_titles: list[str],
    ) -> tuple[str, str]:
        """
        Classify the store into (niche, subcategory).

        Returns ("general", "general") when embeddings are unavailable or no
        niche-specific document is close enough to vote.
        """
        context = self.build_store_context(store_name, categories, product_titles)
        niche = GENERAL

        if self.vectors_enabled:
            try:
                niche = await self._vote_niche(context)
            except (EmbeddingError, httpx.HTTPError) as e:
                logger.warning("Niche vote unavailable", error=str(e))

        subcategory = self.identify_subcategory(niche, context) if niche != GENERAL else GENERAL
        logger.info("Niche identified", niche=niche, subcategory=subcategory, method="vector_vote")
        return niche, subcategory

    async def _vote_niche(self, context: str) -> str:
        vector = await self.embeddings.embed_for_query(context)
        allowed = set(self.catalog.niche_names())
        hits = await self.embeddings.vector_store.nearest(
            KNOWLEDGE_COLLECTION,
            vector,
            limit=NICHE_VOTE_NEIGHBOURS,
            where=lambda r: r.payload.get("niche") in allowed,
        )
        votes: dict[str, float] = defaultdict(float)
        for position, hit in enumerate(hits):
            votes[hit.record.payload["niche"]] += len(hits) - position
        if not votes:
            return GENERAL
        return max(votes.items(), key=lambda kv: kv[1])[0]

    def identify_subcategory(self, niche: str, context: str) -> str:
        """Score the niche's subcategories by keyword containment."""
        text = context.lower()
        best, best_score = GENERAL, 0
        for key, entry in self.catalog.subcategories_for(niche).items():
            if key == GENERAL:
                continue
            score = 0
            if entry.label.lower() in text:
                score += 3
            if key.replace("_", " ") in text:
                score += 2
            score += sum(1 for keyword in entry.keywords if keyword.lower() in text)
            if score > best_score:
                best, best_score = key, score
        return best

    def identify_niche_by_keywords(self, store_name: str, categories: list[str]) -> str:
        """Keyword fallback: store name first, then category labels."""
        for source in [store_name, *categories]:
            lowered = (source or "").lower()
            for keyword, niche in self.catalog.niche_keywords.items():
                if keyword in lowered:
                    logger.debug("Niche matched by keyword", niche=niche, keyword=keyword)
                    return niche
        return GENERAL


__all__ = [
    "KnowledgeBase",
    "KnowledgeCategory",
    "load_seed_documents",
    "NO_KNOWLEDGE_MESSAGE",
]
