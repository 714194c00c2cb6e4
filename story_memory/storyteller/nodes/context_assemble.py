from __future__ import annotations

import asyncio

from loguru import logger

from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.state import StoryState


async def run(state: StoryState, *, engine: MemoryEngine) -> dict:
    participants = list(state.get("participants", []))
    context, characters = await asyncio.gather(
        engine.context.build(participants),
        engine.context.describe_characters(participants),
    )
    logger.bind(node="context_assemble", story_id=state.get("story_id")).info(
        "Context assembled characters={}/{} theme={} setting={} interactions={}",
        len(context.characters),
        len(participants),
        context.theme,
        context.setting,
        len(context.previous_interactions),
    )
    return {"context": context, "characters": characters}
