"""Story pipeline graph nodes."""

from story_memory.storyteller.nodes import (
    context_assemble,
    length_adjust,
    memory_commit,
    story_generate,
    story_publish,
    story_store,
)

__all__ = [
    "context_assemble",
    "story_generate",
    "length_adjust",
    "story_store",
    "story_publish",
    "memory_commit",
]
