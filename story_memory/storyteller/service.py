from __future__ import annotations

from dataclasses import dataclass, field
import time
from typing import Any, Sequence

from loguru import logger

from story_memory.domain.ids import story_id as new_story_id
from story_memory.domain.models import StoryStructure
from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.graph import build_story_graph
from story_memory.storyteller.state import StoryState


@dataclass
class StoryRun:
    story_id: str
    format_name: str
    story: StoryStructure
    segments: list[str]
    length_valid: bool
    length_adjusted: bool = False
    references_attached: int = 0
    memory_committed: bool = False
    llm_calls: int = 0
    llm_cache_hit: bool = False
    characters: list[str] = field(default_factory=list)
    theme: str = ""
    setting: str = ""
    runtime_seconds: float = 0.0


async def tell_story(
    engine: MemoryEngine,
    participants: Sequence[str],
    format_name: str | None = None,
    llm_client: Any | None = None,
) -> StoryRun:
    """Generates, stores and splits a story featuring ``participants``."""

    config = engine.config
    if not participants:
        raise ValueError("At least one participant is required")
    resolved_format = format_name or config.storyteller.default_format
    config.resolve_format(resolved_format)

    started = time.perf_counter()
    initial: StoryState = {
        "story_id": new_story_id(),
        "participants": list(participants),
        "format_name": resolved_format,
    }
    run_log = logger.bind(story_id=initial["story_id"])
    run_log.info("Story run started participants={} format={}", len(participants), resolved_format)

    graph = build_story_graph(engine=engine, config=config, llm_client=llm_client)
    final = await graph.ainvoke(initial)

    context = final["context"]
    result = StoryRun(
        story_id=initial["story_id"],
        format_name=resolved_format,
        story=final["story"],
        segments=list(final.get("segments", [])),
        length_valid=bool(final.get("length_valid", False)),
        length_adjusted=bool(final.get("length_adjusted", False)),
        references_attached=int(final.get("references_attached", 0)),
        memory_committed=bool(final.get("memory_committed", False)),
        llm_calls=int(final.get("story_llm_calls", 0)),
        llm_cache_hit=bool(final.get("story_llm_cache_hit", False)),
        characters=list(context.characters),
        theme=context.theme,
        setting=context.setting,
        runtime_seconds=time.perf_counter() - started,
    )
    run_log.info(
        "Story run finished segments={} valid={} references={} runtime_s={:.2f}",
        len(result.segments),
        result.length_valid,
        result.references_attached,
        result.runtime_seconds,
    )
    return result
