from __future__ import annotations

import asyncio
from typing import Sequence

from loguru import logger

from story_memory.config.schema import MemoryConfig
from story_memory.domain.models import CharacterDescription, CharacterProfile, StoryContext
from story_memory.memory.profiles import ProfileAggregator
from story_memory.memory.record_store import MemoryRecordStore
from story_memory.vectorstore.filters import Eq, In, MetadataFilter
from story_memory.vectorstore.records import MemoryMetadata

# Checked in order against the sorted interest set; first hit wins.
SETTING_KEYWORDS: list[tuple[tuple[str, ...], str]] = [
    (("crypto", "defi", "web3", "blockchain", "nft"), "neon-lit digital frontier"),
    (("ai", "robots", "tech", "cyberpunk", "coding"), "sprawling cyber metropolis"),
    (("space", "astronomy", "scifi", "rockets"), "orbital station at the edge of the galaxy"),
    (("gaming", "esports", "games"), "sprawling virtual arena"),
    (("fantasy", "magic", "dragons"), "ancient enchanted kingdom"),
    (("ocean", "sailing", "surfing"), "storm-tossed archipelago"),
    (("music", "art", "film"), "bohemian riverside district"),
]


def ordered_interest_union(profiles: Sequence[CharacterProfile]) -> list[str]:
    seen: set[str] = set()
    union: list[str] = []
    for profile in profiles:
        for interest in profile.interests:
            key = interest.lower()
            if key not in seen:
                seen.add(key)
                union.append(interest)
    return union


def derive_setting(interests: Sequence[str], default: str = "modern city") -> str:
    """Deterministic for a given interest set regardless of order."""

    normalized = sorted({interest.lower() for interest in interests})
    for keywords, setting in SETTING_KEYWORDS:
        if any(interest in keywords for interest in normalized):
            return setting
    return default


class ContextAssembler:
    def __init__(
        self,
        profiles: ProfileAggregator,
        records: MemoryRecordStore,
        config: MemoryConfig | None = None,
    ):
        self.profiles = profiles
        self.records = records
        self.config = config or MemoryConfig()

    async def _present_profiles(
        self, character_ids: Sequence[str], timeout: float | None
    ) -> list[tuple[str, CharacterProfile]]:
        results = await asyncio.gather(
            *(self.profiles.get(user_id, timeout=timeout) for user_id in character_ids),
            return_exceptions=True,
        )
        present: list[tuple[str, CharacterProfile]] = []
        for user_id, result in zip(character_ids, results):
            if isinstance(result, BaseException):
                logger.bind(user_id=user_id, node="context_assemble").warning(
                    "Profile fetch failed, dropping character error_type={} error={}",
                    type(result).__name__,
                    result,
                )
                continue
            if result is not None:
                present.append((user_id, result))
        return present

    async def build(self, character_ids: Sequence[str], *, timeout: float | None = None) -> StoryContext:
        """Assembles story context; missing or failing profiles degrade the context instead of raising."""

        requested = list(dict.fromkeys(character_ids))
        present = await self._present_profiles(requested, timeout)
        characters = [user_id for user_id, _ in present]
        interests = ordered_interest_union([profile for _, profile in present])
        context = StoryContext(
            characters=characters,
            theme=interests[0] if interests else self.config.default_theme,
            setting=derive_setting(interests, self.config.default_setting),
        )
        if not requested:
            return context

        # History covers every requested participant, profiled or not.
        metadata_filter = MetadataFilter({"type": Eq("interaction"), "user_id": In(requested)})
        try:
            matches = await self.records.find_by_filter(
                metadata_filter, self.config.relevant_interactions_top_k, timeout=timeout
            )
        except Exception as exc:  # noqa: BLE001
            logger.bind(node="context_assemble").warning(
                "Interaction lookup failed, continuing without history error_type={} error={}",
                type(exc).__name__,
                exc,
            )
            return context

        for match in matches:
            if isinstance(match.metadata, MemoryMetadata):
                context.previous_interactions.append(match.metadata.content)
                context.interaction_ids.append(match.id)
        return context

    async def describe_characters(
        self, character_ids: Sequence[str], *, timeout: float | None = None
    ) -> list[CharacterDescription]:
        present = await self._present_profiles(list(character_ids), timeout)
        return [
            CharacterDescription(
                user_id=user_id,
                username=profile.username,
                traits=list(profile.traits),
                style=profile.style,
                role="protagonist" if index == 0 else "ally",
            )
            for index, (user_id, profile) in enumerate(present)
        ]
