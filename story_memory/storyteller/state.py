from __future__ import annotations

from typing import NotRequired, TypedDict

from story_memory.domain.models import CharacterDescription, StoryContext, StoryStructure


class StoryState(TypedDict):
    # Inputs
    story_id: str
    participants: list[str]
    format_name: str

    # Node outputs
    context: NotRequired[StoryContext]
    characters: NotRequired[list[CharacterDescription]]

    story: NotRequired[StoryStructure]
    story_llm_calls: NotRequired[int]
    story_llm_cache_hit: NotRequired[bool]

    length_valid: NotRequired[bool]
    length_adjusted: NotRequired[bool]

    story_stored: NotRequired[bool]
    segments: NotRequired[list[str]]
    segments_stored: NotRequired[int]

    references_attached: NotRequired[int]
    memory_committed: NotRequired[bool]
