from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Platform = Literal["twitter", "arena", "discord"]


class UserInteraction(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    username: str
    content: str
    platform: Platform
    timestamp: int = Field(description="Epoch milliseconds of the source event")
    sentiment: str | None = None
    interaction_type: str | None = None
    topics: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)


class CharacterProfile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    username: str
    traits: list[str] = Field(default_factory=list)
    interests: list[str] = Field(default_factory=list)
    style: str = "casual"
    interactions: list[UserInteraction] = Field(default_factory=list)
    last_updated: int = 0

    def summary_text(self) -> str:
        """Text embedded for the profile record and used for similarity queries."""

        return " ".join([*self.traits, *self.interests]).strip()


class Chapter(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    content: str = ""
    featured_characters: list[str] = Field(default_factory=list)


class StoryStructure(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    introduction: str = ""
    chapters: list[Chapter] = Field(default_factory=list)
    conclusion: str = ""


@dataclass
class StoryContext:
    characters: list[str]
    theme: str
    setting: str
    previous_interactions: list[str] = field(default_factory=list)
    interaction_ids: list[str] = field(default_factory=list)


@dataclass
class CharacterDescription:
    user_id: str
    username: str
    traits: list[str]
    style: str
    role: str
