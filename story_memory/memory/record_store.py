from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from loguru import logger

from story_memory.config.schema import MemoryConfig
from story_memory.domain.ids import epoch_ms, interaction_id, memory_id, utc_now_iso
from story_memory.domain.models import UserInteraction
from story_memory.memory.locks import KeyedLock
from story_memory.vectorstore.base import VectorStore
from story_memory.vectorstore.filters import Eq, Exists, In, MetadataFilter
from story_memory.vectorstore.records import MemoryMetadata, QueryMatch, VectorRecord


class Embedder(Protocol):
    dimension: int

    async def embed(self, text: str, *, timeout: float | None = None) -> list[float]: ...

    async def embed_many(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]: ...


class MemoryRecordStore:
    """Memory and interaction records on top of a vector store.

    Counter and back-reference updates are fetch-then-write. With
    ``memory.serialize_writes`` they are serialized per record id inside this
    process; writers in other processes can still interleave and lose an update.
    """

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        config: MemoryConfig | None = None,
        locks: KeyedLock | None = None,
    ):
        self.vector_store = store
        self.embedder = embedder
        self.config = config or MemoryConfig()
        self.locks = locks or KeyedLock(enabled=self.config.serialize_writes)

    async def _query_vector(self, text: str, timeout: float | None) -> list[float]:
        # Empty text selects metadata-ranked retrieval.
        if not text:
            return [0.0] * self.embedder.dimension
        return await self.embedder.embed(text, timeout=timeout)

    async def store(
        self,
        text: str,
        metadata: Mapping[str, Any] | MemoryMetadata,
        *,
        record_id: str | None = None,
        timeout: float | None = None,
    ) -> str:
        """Embeds ``text`` and upserts it with ``metadata``; returns the record id.

        ``content`` and ``timestamp`` are always set from the call. Nothing is
        written when embedding fails.
        """

        fields = metadata.model_dump() if isinstance(metadata, MemoryMetadata) else dict(metadata)
        fields["content"] = text
        fields["timestamp"] = utc_now_iso()
        record = MemoryMetadata.model_validate(fields)

        vector = await self.embedder.embed(text, timeout=timeout)
        new_id = record_id or memory_id()
        await self.vector_store.upsert(new_id, vector, record, timeout=timeout)
        logger.bind(record_id=new_id).debug("Stored {} record user={}", record.type, record.user)
        return new_id

    async def store_interaction(self, interaction: UserInteraction, *, timeout: float | None = None) -> str:
        text = f"{interaction.username}: {interaction.content}"
        metadata = {
            "type": "interaction",
            "user": interaction.username,
            "user_id": interaction.user_id,
            "platform": interaction.platform,
            "interaction_type": interaction.interaction_type,
            "sentiment": interaction.sentiment,
            "topics": list(interaction.topics),
            "interests": list(interaction.interests),
        }
        record_id = interaction_id(interaction.user_id, interaction.timestamp or epoch_ms())
        return await self.store(text, metadata, record_id=record_id, timeout=timeout)

    async def fetch(self, record_id: str, *, timeout: float | None = None) -> VectorRecord | None:
        return await self.vector_store.fetch(record_id, timeout=timeout)

    async def _fetch_memory(self, record_id: str, timeout: float | None) -> VectorRecord | None:
        record = await self.vector_store.fetch(record_id, timeout=timeout)
        if record is None:
            return None
        if not isinstance(record.metadata, MemoryMetadata):
            raise ValueError(f"Record '{record_id}' is a {record.metadata.type} record, not a memory")
        return record

    async def increment_interaction_count(self, record_id: str, *, timeout: float | None = None) -> bool:
        """Adds one to ``interaction_count``; returns False when the record is absent."""

        async with self.locks.hold(record_id):
            record = await self._fetch_memory(record_id, timeout)
            if record is None:
                logger.bind(record_id=record_id).debug("Increment skipped, record not found")
                return False
            metadata = record.metadata.model_copy(
                update={
                    "interaction_count": record.metadata.interaction_count + 1,
                    "last_interaction": utc_now_iso(),
                }
            )
            await self.vector_store.update(record_id, metadata, timeout=timeout)
        return True

    async def attach_story_reference(self, record_id: str, story_id: str, *, timeout: float | None = None) -> bool:
        """Appends ``story_id`` to ``used_in_stories`` once; False when the record is absent."""

        async with self.locks.hold(record_id):
            record = await self._fetch_memory(record_id, timeout)
            if record is None:
                return False
            used = list(record.metadata.used_in_stories)
            if story_id not in used:
                used.append(story_id)
            metadata = record.metadata.model_copy(
                update={"used_in_stories": used, "last_referenced": utc_now_iso()}
            )
            await self.vector_store.update(record_id, metadata, timeout=timeout)
        return True

    async def find_by_filter(
        self,
        metadata_filter: MetadataFilter | None,
        top_k: int,
        query_text: str = "",
        *,
        timeout: float | None = None,
    ) -> list[QueryMatch]:
        """Filtered top-k query in the store's own ordering."""

        vector = await self._query_vector(query_text, timeout)
        return await self.vector_store.query(vector, top_k, metadata_filter, timeout=timeout)

    async def find_similar(
        self,
        text: str,
        limit: int | None = None,
        *,
        timeout: float | None = None,
        **equals: Any,
    ) -> list[QueryMatch]:
        limit = limit if limit is not None else self.config.similar_memories_limit
        metadata_filter = MetadataFilter.where(**equals) if equals else None
        return await self.find_by_filter(metadata_filter, limit, text, timeout=timeout)

    async def search_by_user(
        self, username: str, limit: int | None = None, *, timeout: float | None = None
    ) -> list[QueryMatch]:
        limit = limit if limit is not None else self.config.user_search_limit
        return await self.find_by_filter(MetadataFilter.where(user=username), limit, timeout=timeout)

    async def find_recurring_characters(
        self,
        min_interactions: int | None = None,
        platform: str | None = None,
        *,
        timeout: float | None = None,
    ) -> list[QueryMatch]:
        """Memory records with at least ``min_interactions`` interactions.

        The filter grammar has no range operator, so the threshold is applied
        to a metadata-ranked scan window of ``memory.recurring_scan_top_k``.
        """

        threshold = min_interactions if min_interactions is not None else self.config.recurring_min_interactions
        metadata_filter = MetadataFilter({"type": In(["memory", "interaction"])})
        if platform:
            metadata_filter = metadata_filter.and_(MetadataFilter.where(platform=platform))
        matches = await self.find_by_filter(metadata_filter, self.config.recurring_scan_top_k, timeout=timeout)
        return [
            match
            for match in matches
            if isinstance(match.metadata, MemoryMetadata) and match.metadata.interaction_count >= threshold
        ]

    async def get_unused_ideas(self, limit: int | None = None, *, timeout: float | None = None) -> list[QueryMatch]:
        limit = limit if limit is not None else self.config.unused_ideas_limit
        metadata_filter = MetadataFilter(
            {"type": In(["memory", "interaction"]), "used_in_stories": Exists(False)}
        )
        return await self.find_by_filter(metadata_filter, limit, timeout=timeout)

    async def find_similar_stories(
        self,
        theme: str,
        characters: Sequence[str],
        limit: int = 5,
        *,
        timeout: float | None = None,
    ) -> list[QueryMatch]:
        metadata_filter = MetadataFilter({"type": Eq("story_context"), "characters": In(characters)})
        return await self.find_by_filter(metadata_filter, limit, theme, timeout=timeout)

    async def delete(self, record_id: str, *, timeout: float | None = None) -> None:
        """Hard delete; deleting an absent id is a no-op."""

        async with self.locks.hold(record_id):
            await self.vector_store.delete(record_id, timeout=timeout)
        logger.bind(record_id=record_id).info("Deleted record")

