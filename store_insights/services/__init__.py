"""
Services package for the Store Insights Pipeline.

Services:
    - AIManager: Chat routing with provider fallback
    - EmbeddingService: Text embeddings and near-duplicate checks
    - KnowledgeBase: Niche-aware benchmark and strategy retrieval
    - JsonExtractor: Resilient JSON extraction from model replies

Providers:
    - OpenAIProvider, GeminiProvider, AnthropicProvider
"""

from store_insights.services.ai_manager import AIManager
from store_insights.services.ai_providers import (
    AIProvider,
    AnthropicProvider,
    GeminiProvider,
    OpenAIProvider,
    ProviderConfigurationError,
    ProviderError,
    ProviderName,
)
from store_insights.services.embedding_service import EmbeddingError, EmbeddingService
from store_insights.services.json_extractor import JsonExtractor
from store_insights.services.knowledge_base import KnowledgeBase, load_seed_documents
from store_insights.services.vector_store import InMemoryVectorStore, VectorStore

__all__ = [
    # AI
    "AIManager",
    "AIProvider",
    "OpenAIProvider",
    "GeminiProvider",
    "AnthropicProvider",
    "ProviderName",
    "ProviderError",
    "ProviderConfigurationError",
    # Embeddings
    "EmbeddingService",
    "EmbeddingError",
    "VectorStore",
    "InMemoryVectorStore",
    # Knowledge
    "KnowledgeBase",
    "load_seed_documents",
    # Extraction
    "JsonExtractor",
]
