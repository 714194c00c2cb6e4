from __future__ import annotations

import asyncio
import hashlib
import math
from typing import Sequence

import pytest

from story_memory.config.schema import AppConfigRoot
from story_memory.errors import EmbeddingError, StoreError
from story_memory.memory.engine import MemoryEngine
from story_memory.vectorstore.base import is_neutral_vector
from story_memory.vectorstore.filters import MetadataFilter
from story_memory.vectorstore.records import QueryMatch, RecordMetadata, VectorRecord

DIMENSION = 8


class FakeEmbedder:
    """Deterministic hash embeddings; ``fail`` makes every call raise."""

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.model_identifier = "fake/embedding/hash"
        self.calls: list[str] = []
        self.batches: list[list[str]] = []
        self.fail = False

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise EmbeddingError("embedding provider unavailable")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(byte / 255.0) + 0.01 for byte in digest[: self.dimension]]

    async def embed_many(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]:
        self.batches.append(list(texts))
        return [await self.embed(text, timeout=timeout) for text in texts]


def _cosine(left: Sequence[float], right: Sequence[float]) -> float:
    dot = sum(a * b for a, b in zip(left, right))
    norm = math.sqrt(sum(a * a for a in left)) * math.sqrt(sum(b * b for b in right))
    return dot / norm if norm else 0.0


class InMemoryVectorStore:
    """Vector store fake honoring the filter grammar.

    Reads yield to the event loop after copying the record, so concurrent
    fetch-then-write cycles interleave the way they would against a remote store.
    """

    def __init__(self, dimension: int = DIMENSION):
        self.dimension = dimension
        self.namespaces: dict[str, dict[str, VectorRecord]] = {}
        self.closed = False
        self.fail_queries = False
        self.fail_upserts = False

    def _space(self, namespace: str | None) -> dict[str, VectorRecord]:
        return self.namespaces.setdefault(namespace or "", {})

    def records(self, namespace: str | None = None) -> dict[str, VectorRecord]:
        return self._space(namespace)

    async def upsert(
        self,
        record_id: str,
        vector: Sequence[float],
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if len(vector) != self.dimension:
            raise ValueError("dimension mismatch")
        if self.fail_upserts:
            raise StoreError(f"upsert failed for {record_id}", record_id=record_id)
        await asyncio.sleep(0)
        self._space(namespace)[record_id] = VectorRecord(record_id, list(vector), metadata.model_copy(deep=True))

    async def fetch(
        self, record_id: str, *, namespace: str | None = None, timeout: float | None = None
    ) -> VectorRecord | None:
        record = self._space(namespace).get(record_id)
        snapshot = None
        if record is not None:
            snapshot = VectorRecord(record.id, list(record.vector), record.metadata.model_copy(deep=True))
        await asyncio.sleep(0)
        return snapshot

    async def update(
        self,
        record_id: str,
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        space = self._space(namespace)
        if record_id not in space:
            raise StoreError(f"missing {record_id}", record_id=record_id)
        await asyncio.sleep(0)
        space[record_id] = VectorRecord(record_id, space[record_id].vector, metadata.model_copy(deep=True))

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> list[QueryMatch]:
        if self.fail_queries:
            raise StoreError("query failed")
        await asyncio.sleep(0)
        candidates = [
            record
            for record in self._space(namespace).values()
            if metadata_filter is None or metadata_filter.matches(record.metadata)
        ]
        if is_neutral_vector(vector):
            scored = [(0.0, record) for record in candidates]
        else:
            scored = sorted(
                ((_cosine(vector, record.vector), record) for record in candidates),
                key=lambda item: item[0],
                reverse=True,
            )
        return [
            QueryMatch(id=record.id, score=score, metadata=record.metadata.model_copy(deep=True))
            for score, record in scored[:top_k]
        ]

    async def delete(
        self,
        record_id: str | None = None,
        *,
        metadata_filter: MetadataFilter | None = None,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        space = self._space(namespace)
        if record_id is not None:
            space.pop(record_id, None)
            return
        for key in [key for key, record in space.items() if metadata_filter and metadata_filter.matches(record.metadata)]:
            del space[key]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def app_config() -> AppConfigRoot:
    return AppConfigRoot()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def fake_store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture
def engine(app_config: AppConfigRoot, fake_store: InMemoryVectorStore, fake_embedder: FakeEmbedder) -> MemoryEngine:
    return MemoryEngine.from_components(app_config, fake_store, fake_embedder)
