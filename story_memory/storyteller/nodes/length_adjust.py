from __future__ import annotations

from loguru import logger

from story_memory.config.schema import AppConfigRoot
from story_memory.storyteller.publisher import adjust_story_length, story_length, validate_length
from story_memory.storyteller.state import StoryState


async def run(state: StoryState, *, config: AppConfigRoot) -> dict:
    story = state["story"]
    story_format = config.resolve_format(state.get("format_name"))
    node_log = logger.bind(node="length_adjust", story_id=state.get("story_id"))

    if validate_length(story, story_format):
        return {"length_valid": True, "length_adjusted": False}
    if not config.storyteller.adjust_length:
        node_log.warning("Story exceeds format length={} max={}", story_length(story), story_format.max_length)
        return {"length_valid": False, "length_adjusted": False}

    adjusted = adjust_story_length(story, story_format)
    valid = validate_length(adjusted, story_format)
    node_log.info(
        "Story trimmed length_before={} length_after={} max={} valid={}",
        story_length(story),
        story_length(adjusted),
        story_format.max_length,
        valid,
    )
    return {"story": adjusted, "length_valid": valid, "length_adjusted": True}
