from __future__ import annotations

import orjson
from loguru import logger

from story_memory.domain.ids import story_context_id, utc_now_iso
from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.state import StoryState
from story_memory.vectorstore.records import StoryContextMetadata, StoryMetadata


async def run(state: StoryState, *, engine: MemoryEngine) -> dict:
    story = state["story"]
    context = state["context"]
    story_id = state["story_id"]
    participants = list(state.get("participants", []))
    timestamp = utc_now_iso()

    story_vector = await engine.embedder.embed(f"{story.title}\n\n{story.introduction}")
    await engine.vector_store.upsert(
        story_id,
        story_vector,
        StoryMetadata(
            characters=participants,
            format=state.get("format_name", ""),
            title=story.title,
            story=story.model_dump_json(),
            timestamp=timestamp,
        ),
    )

    context_text = orjson.dumps(
        {
            "setting": context.setting,
            "theme": context.theme,
            "characters": [c.username for c in state.get("characters", [])],
            "previous_interactions": context.previous_interactions,
        }
    ).decode("utf-8")
    context_vector = await engine.embedder.embed(f"{context.theme} {context.setting} {story.title}")
    await engine.vector_store.upsert(
        story_context_id(story_id),
        context_vector,
        StoryContextMetadata(
            characters=context.characters or participants,
            theme=context.theme,
            content=context_text,
            story_id=story_id,
            timestamp=timestamp,
        ),
    )

    logger.bind(node="story_store", story_id=story_id).info(
        "Story stored title={!r} chapters={}", story.title, len(story.chapters)
    )
    return {"story_stored": True}
