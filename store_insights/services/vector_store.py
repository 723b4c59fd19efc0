"""
Append-only vector storage with nearest-neighbour lookup.

Vectors live in named collections and may carry a scope (for suggestions,
the store id) so that lookups never cross stores. Distance is cosine
distance, ``1 - cosine_similarity``.
"""

from __future__ import annotations

import asyncio
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence
from uuid import uuid4

SUGGESTIONS_COLLECTION = "suggestions"
KNOWLEDGE_COLLECTION = "knowledge"


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 when either vector has zero norm."""
    if len(a) != len(b):
        raise ValueError(f"Vectors must have the same dimension ({len(a)} != {len(b)})")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


@dataclass
class VectorRecord:
    """A stored vector with its scope and payload."""
    vector: list[float]
    scope: Optional[str] = None
    payload: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class Neighbour:
    """A lookup hit."""
    record: VectorRecord
    distance: float

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance


class VectorStore(ABC):
    """Abstract vector store. Records are never updated in place."""

    @abstractmethod
    async def add(
        self,
        collection: str,
        vector: Sequence[float],
        scope: Optional[str] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> VectorRecord:
        pass

    @abstractmethod
    async def nearest(
        self,
        collection: str,
        vector: Sequence[float],
        limit: int = 1,
        scope: Optional[str] = None,
        where: Optional[Callable[[VectorRecord], bool]] = None,
    ) -> list[Neighbour]:
        """Closest records first, restricted to ``scope`` when given."""
        pass

    @abstractmethod
    async def records(self, collection: str, scope: Optional[str] = None) -> list[VectorRecord]:
        pass

    async def count(self, collection: str, scope: Optional[str] = None) -> int:
        return len(await self.records(collection, scope))


class InMemoryVectorStore(VectorStore):
    """Process-local vector store for tests, the CLI and small deployments."""

    def __init__(self):
        self._collections: dict[str, list[VectorRecord]] = {}
        self._lock = asyncio.Lock()

    async def add(self, collection, vector, scope=None, payload=None) -> VectorRecord:
        record = VectorRecord(
            vector=[float(v) for v in vector],
            scope=str(scope) if scope is not None else None,
            payload=dict(payload or {}),
        )
        async with self._lock:
            self._collections.setdefault(collection, []).append(record)
        return record

    async def nearest(self, collection, vector, limit=1, scope=None, where=None) -> list[Neighbour]:
        hits = []
        for record in await self.records(collection, scope):
            if where is not None and not where(record):
                continue
            if len(record.vector) != len(vector):
                continue
            hits.append(Neighbour(record, 1.0 - cosine_similarity(vector, record.vector)))
        hits.sort(key=lambda n: n.distance)
        return hits[:limit]

    async def records(self, collection, scope=None) -> list[VectorRecord]:
        items = list(self._collections.get(collection, []))
        if scope is None:
            return items
        return [r for r in items if r.scope == str(scope)]


__all__ = [
    "SUGGESTIONS_COLLECTION",
    "KNOWLEDGE_COLLECTION",
    "cosine_similarity",
    "VectorRecord",
    "Neighbour",
    "VectorStore",
    "InMemoryVectorStore",
]
