from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator

from loguru import logger

from story_memory.config.schema import AppConfigRoot
from story_memory.errors import EmbeddingError
from story_memory.memory.context import ContextAssembler
from story_memory.memory.extraction import ProfileExtractor
from story_memory.memory.locks import KeyedLock
from story_memory.memory.profiles import ProfileAggregator
from story_memory.memory.record_store import Embedder, MemoryRecordStore
from story_memory.vectorstore.base import VectorStore


@dataclass
class MemoryEngine:
    config: AppConfigRoot
    embedder: Embedder
    vector_store: VectorStore
    records: MemoryRecordStore
    profiles: ProfileAggregator
    context: ContextAssembler

    @classmethod
    def from_components(
        cls,
        config: AppConfigRoot,
        vector_store: VectorStore,
        embedder: Embedder,
        extractor: ProfileExtractor | None = None,
    ) -> "MemoryEngine":
        if vector_store.dimension != embedder.dimension:
            raise ValueError(
                f"Embedding dimension {embedder.dimension} does not match store dimension {vector_store.dimension}"
            )
        # Records and profiles share one lock table so a record id is never written concurrently.
        locks = KeyedLock(enabled=config.memory.serialize_writes)
        records = MemoryRecordStore(vector_store, embedder, config.memory, locks)
        profiles = ProfileAggregator(vector_store, embedder, extractor, config.memory, locks)
        context = ContextAssembler(profiles, records, config.memory)
        return cls(
            config=config,
            embedder=embedder,
            vector_store=vector_store,
            records=records,
            profiles=profiles,
            context=context,
        )

    async def close(self) -> None:
        await self.vector_store.close()


@asynccontextmanager
async def engine_scope(config: AppConfigRoot) -> AsyncIterator[MemoryEngine]:
    """Builds the engine from configuration and releases it on exit."""

    from story_memory.llm.embeddings import EmbeddingClient
    from story_memory.vectorstore.lancedb_store import LanceDBVectorStore

    try:
        embedder = EmbeddingClient(config)
    except ValueError as exc:
        raise EmbeddingError(f"Embedding provider initialization failed: {exc}") from exc

    vector_store = await LanceDBVectorStore.open(config.vector_store, embedder.dimension)
    engine = MemoryEngine.from_components(config, vector_store, embedder)
    logger.bind(node="engine").info(
        "Memory engine ready embedding={} store={}", embedder.model_identifier, config.vector_store.uri
    )
    try:
        yield engine
    finally:
        await engine.close()
