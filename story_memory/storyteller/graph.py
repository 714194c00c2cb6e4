from __future__ import annotations

from typing import Any

from langgraph.graph import END, START, StateGraph

from story_memory.config.schema import AppConfigRoot
from story_memory.memory.engine import MemoryEngine
from story_memory.storyteller.nodes import (
    context_assemble,
    length_adjust,
    memory_commit,
    story_generate,
    story_publish,
    story_store,
)
from story_memory.storyteller.state import StoryState


def build_story_graph(
    *,
    engine: MemoryEngine,
    config: AppConfigRoot,
    llm_client: Any | None = None,
):
    workflow = StateGraph(StoryState)

    async def _context_assemble(state: StoryState) -> dict:
        return await context_assemble.run(state, engine=engine)

    async def _story_generate(state: StoryState) -> dict:
        return await story_generate.run(state, config=config, llm_client=llm_client)

    async def _length_adjust(state: StoryState) -> dict:
        return await length_adjust.run(state, config=config)

    async def _story_store(state: StoryState) -> dict:
        return await story_store.run(state, engine=engine)

    async def _story_publish(state: StoryState) -> dict:
        return await story_publish.run(state, engine=engine, config=config)

    async def _memory_commit(state: StoryState) -> dict:
        return await memory_commit.run(state, engine=engine)

    workflow.add_node("context_assemble", _context_assemble)
    workflow.add_node("story_generate", _story_generate)
    workflow.add_node("length_adjust", _length_adjust)
    workflow.add_node("story_store", _story_store)
    workflow.add_node("story_publish", _story_publish)
    workflow.add_node("memory_commit", _memory_commit)

    workflow.add_edge(START, "context_assemble")
    workflow.add_edge("context_assemble", "story_generate")
    workflow.add_edge("story_generate", "length_adjust")
    workflow.add_edge("length_adjust", "story_store")
    workflow.add_edge("story_store", "story_publish")
    workflow.add_edge("story_publish", "memory_commit")
    workflow.add_edge("memory_commit", END)

    return workflow.compile()
