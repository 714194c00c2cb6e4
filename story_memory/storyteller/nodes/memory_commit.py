from __future__ import annotations

import asyncio

from loguru import logger

from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.state import StoryState


async def run(state: StoryState, *, engine: MemoryEngine) -> dict:
    """Marks every interaction that fed the story as used by it."""

    story_id = state["story_id"]
    record_ids = list(state["context"].interaction_ids)
    node_log = logger.bind(node="memory_commit", story_id=story_id)

    results = await asyncio.gather(
        *(engine.records.attach_story_reference(record_id, story_id) for record_id in record_ids),
        return_exceptions=True,
    )
    attached = 0
    failed = 0
    for record_id, result in zip(record_ids, results):
        if isinstance(result, BaseException):
            failed += 1
            node_log.bind(record_id=record_id).warning(
                "Story reference not attached error_type={} error={}", type(result).__name__, result
            )
        elif result:
            attached += 1

    node_log.info("Story references attached={} failed={} total={}", attached, failed, len(record_ids))
    return {"references_attached": attached, "memory_committed": failed == 0}
