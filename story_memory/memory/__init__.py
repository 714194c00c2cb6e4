"""Memory records, character profiles and story context assembly."""

from story_memory.memory.context import ContextAssembler
from story_memory.memory.engine import MemoryEngine, engine_scope
from story_memory.memory.extraction import KeywordProfileExtractor, ProfileExtractor
from story_memory.memory.profiles import ProfileAggregator
from story_memory.memory.record_store import MemoryRecordStore

__all__ = [
    "ContextAssembler",
    "KeywordProfileExtractor",
    "MemoryEngine",
    "MemoryRecordStore",
    "ProfileAggregator",
    "ProfileExtractor",
    "engine_scope",
]
