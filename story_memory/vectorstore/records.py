from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from story_memory.domain.models import Platform


class MemoryMetadata(BaseModel):
    """Metadata of a stored memory or interaction record."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["memory", "interaction"] = "memory"
    user: str
    user_id: str | None = None
    content: str
    timestamp: str
    interaction_count: int = 0
    used_in_stories: list[str] = Field(default_factory=list)
    platform: Platform | None = None
    interaction_type: str | None = None
    sentiment: str | None = None
    character_role: str | None = None
    topics: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    last_interaction: str | None = None
    last_referenced: str | None = None

    @field_validator("interaction_count")
    @classmethod
    def _non_negative_count(cls, value: int) -> int:
        if value < 0:
            raise ValueError("interaction_count must be non-negative")
        return value


class ProfileMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["character_profile"] = "character_profile"
    user_id: str
    username: str
    profile: str
    timestamp: str


class StoryContextMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["story_context"] = "story_context"
    characters: list[str] = Field(default_factory=list)
    theme: str = ""
    content: str = ""
    story_id: str | None = None
    segment_index: int | None = None
    timestamp: str


class StoryMetadata(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: Literal["longform_story"] = "longform_story"
    characters: list[str] = Field(default_factory=list)
    format: str
    title: str = ""
    story: str
    timestamp: str


RecordMetadata = Annotated[
    Union[MemoryMetadata, ProfileMetadata, StoryContextMetadata, StoryMetadata],
    Field(discriminator="type"),
]

_METADATA_ADAPTER: TypeAdapter[RecordMetadata] = TypeAdapter(RecordMetadata)


def parse_metadata(payload: str | bytes) -> RecordMetadata:
    return _METADATA_ADAPTER.validate_json(payload)


def dump_metadata(metadata: RecordMetadata) -> str:
    return metadata.model_dump_json()


@dataclass
class VectorRecord:
    id: str
    vector: list[float]
    metadata: RecordMetadata


@dataclass
class QueryMatch:
    id: str
    score: float
    metadata: RecordMetadata
