from __future__ import annotations

from loguru import logger
from pydantic import ValidationError

from story_memory.config.schema import MemoryConfig
from story_memory.domain.ids import epoch_ms, profile_id, utc_now_iso
from story_memory.domain.models import CharacterProfile, UserInteraction
from story_memory.errors import CorruptProfileError
from story_memory.memory.extraction import KeywordProfileExtractor, ProfileExtractor
from story_memory.memory.locks import KeyedLock
from story_memory.memory.record_store import Embedder
from story_memory.vectorstore.base import VectorStore
from story_memory.vectorstore.filters import MetadataFilter
from story_memory.vectorstore.records import ProfileMetadata, QueryMatch


def profile_embedding_text(profile: CharacterProfile) -> str:
    return " ".join(part for part in (profile.username, profile.summary_text(), profile.style) if part)


def project_profile(
    user_id: str,
    username: str,
    history: list[UserInteraction],
    extractor: ProfileExtractor,
) -> CharacterProfile:
    """Recomputes derived profile fields from the whole interaction history."""

    traits: list[str] = []
    interests: list[str] = []
    style = "casual"
    for item in history:
        traits = extractor.derive_traits(item.content, traits)
        interests = extractor.derive_interests(item.content, interests, [*item.interests, *item.topics])
        style = extractor.analyze_style(item.content, style)
    return CharacterProfile(
        user_id=user_id,
        username=username,
        traits=traits,
        interests=interests,
        style=style,
        interactions=history,
        last_updated=epoch_ms(),
    )


class ProfileAggregator:
    """Maintains one ``character_profile`` record per user."""

    def __init__(
        self,
        store: VectorStore,
        embedder: Embedder,
        extractor: ProfileExtractor | None = None,
        config: MemoryConfig | None = None,
        locks: KeyedLock | None = None,
    ):
        self.vector_store = store
        self.embedder = embedder
        self.extractor = extractor or KeywordProfileExtractor()
        self.config = config or MemoryConfig()
        self.locks = locks or KeyedLock(enabled=self.config.serialize_writes)

    async def update(self, interaction: UserInteraction, *, timeout: float | None = None) -> CharacterProfile:
        """Appends the interaction and overwrites the user's profile record."""

        record_id = profile_id(interaction.user_id)
        log = logger.bind(user_id=interaction.user_id, record_id=record_id)
        async with self.locks.hold(record_id):
            existing = await self.get(interaction.user_id, timeout=timeout)
            if interaction.sentiment is None:
                interaction = interaction.model_copy(
                    update={"sentiment": self.extractor.analyze_sentiment(interaction.content, None)}
                )
            history = [*(existing.interactions if existing else []), interaction]
            profile = project_profile(interaction.user_id, interaction.username, history, self.extractor)

            vector = await self.embedder.embed(profile_embedding_text(profile), timeout=timeout)
            metadata = ProfileMetadata(
                user_id=profile.user_id,
                username=profile.username,
                profile=profile.model_dump_json(),
                timestamp=utc_now_iso(),
            )
            await self.vector_store.upsert(record_id, vector, metadata, timeout=timeout)
        log.debug("Profile updated interactions={} traits={}", len(history), len(profile.traits))
        return profile

    async def get(self, user_id: str, *, timeout: float | None = None) -> CharacterProfile | None:
        metadata_filter = MetadataFilter.where(type="character_profile", user_id=user_id)
        matches = await self.vector_store.query(
            [0.0] * self.embedder.dimension, 1, metadata_filter, timeout=timeout
        )
        if not matches:
            return None

        match = matches[0]
        payload = getattr(match.metadata, "profile", None)
        try:
            if payload is None:
                raise ValueError("profile payload missing")
            return CharacterProfile.model_validate_json(payload)
        except (ValidationError, ValueError) as exc:
            logger.bind(record_id=match.id, user_id=user_id).error("Corrupt profile payload: {}", exc)
            raise CorruptProfileError(f"Profile record '{match.id}' is unreadable: {exc}", record_id=match.id) from exc

    async def find_similar(
        self, user_id: str, limit: int | None = None, *, timeout: float | None = None
    ) -> list[QueryMatch]:
        """Profiles close to this user's traits and interests; may include the user's own."""

        profile = await self.get(user_id, timeout=timeout)
        if profile is None:
            return []
        limit = limit if limit is not None else self.config.similar_profiles_limit
        query_text = profile.summary_text()
        if query_text:
            vector = await self.embedder.embed(query_text, timeout=timeout)
        else:
            vector = [0.0] * self.embedder.dimension
        return await self.vector_store.query(
            vector, limit, MetadataFilter.where(type="character_profile"), timeout=timeout
        )
