from __future__ import annotations

import asyncio

from loguru import logger

from story_memory.config.schema import AppConfigRoot
from story_memory.domain.ids import segment_id, utc_now_iso
from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.publisher import split_for_platform
from story_memory.storyteller.state import StoryState
from story_memory.vectorstore.records import StoryContextMetadata


async def _store_segments(engine: MemoryEngine, state: StoryState, segments: list[str]) -> int:
    context = state["context"]
    characters = context.characters or list(state.get("participants", []))
    timestamp = utc_now_iso()
    vectors = await engine.embedder.embed_many(segments)
    await asyncio.gather(
        *(
            engine.vector_store.upsert(
                segment_id(state["story_id"], index),
                vector,
                StoryContextMetadata(
                    characters=characters,
                    theme=context.theme,
                    content=segment,
                    story_id=state["story_id"],
                    segment_index=index,
                    timestamp=timestamp,
                ),
            )
            for index, (segment, vector) in enumerate(zip(segments, vectors))
        )
    )
    return len(segments)


async def run(state: StoryState, *, engine: MemoryEngine, config: AppConfigRoot) -> dict:
    story_format = config.resolve_format(state.get("format_name"))
    segments = split_for_platform(state["story"], story_format)

    stored = 0
    if config.storyteller.store_segments and segments:
        stored = await _store_segments(engine, state, segments)

    logger.bind(node="story_publish", story_id=state.get("story_id")).info(
        "Story split segments={} format={} stored={}", len(segments), story_format.type, stored
    )
    return {"segments": segments, "segments_stored": stored}
