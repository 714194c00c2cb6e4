"""Vector store records, filters and adapters."""

from story_memory.vectorstore.base import VectorStore
from story_memory.vectorstore.filters import Eq, Exists, In, MetadataFilter
from story_memory.vectorstore.records import (
    MemoryMetadata,
    ProfileMetadata,
    QueryMatch,
    StoryContextMetadata,
    StoryMetadata,
    VectorRecord,
)

__all__ = [
    "Eq",
    "Exists",
    "In",
    "MemoryMetadata",
    "MetadataFilter",
    "ProfileMetadata",
    "QueryMatch",
    "StoryContextMetadata",
    "StoryMetadata",
    "VectorRecord",
    "VectorStore",
]
