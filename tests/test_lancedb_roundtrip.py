from __future__ import annotations

import asyncio
from pathlib import Path

from story_memory.config.schema import AppConfigRoot, VectorStoreConfig
from story_memory.memory.engine import MemoryEngine
from story_memory.vectorstore.filters import Eq, Exists, In, MetadataFilter
from story_memory.vectorstore.lancedb_store import LanceDBVectorStore
from story_memory.vectorstore.records import MemoryMetadata, StoryContextMetadata

from conftest import DIMENSION, FakeEmbedder


async def _open(tmp_path: Path) -> LanceDBVectorStore:
    return await LanceDBVectorStore.open(VectorStoreConfig(uri=tmp_path / "lancedb"), DIMENSION)


def test_memory_lifecycle_against_lancedb_table(tmp_path: Path) -> None:
    embedder = FakeEmbedder()

    async def _run() -> dict:
        store = await _open(tmp_path)
        engine = MemoryEngine.from_components(AppConfigRoot(), store, embedder)
        first = await engine.records.store("gm frens", {"user": "alice", "platform": "twitter"})
        second = await engine.records.store("dragons at dawn", {"user": "bob", "platform": "discord"})

        assert await engine.records.increment_interaction_count(first)
        assert await engine.records.increment_interaction_count(first)
        assert await engine.records.attach_story_reference(first, "story-1")
        assert await engine.records.attach_story_reference(first, "story-1")

        await store.upsert(
            "story-1-context",
            await embedder.embed("defi"),
            StoryContextMetadata(characters=["u1", "u2"], theme="defi", story_id="story-1", timestamp="t"),
        )

        result = {
            "first": first,
            "second": second,
            "fetched": await engine.records.fetch(first),
            "unused": await engine.records.get_unused_ideas(10),
            "by_user": await engine.records.search_by_user("bob"),
            "similar_stories": await engine.records.find_similar_stories("defi", ["u2", "u9"]),
            "other_stories": await engine.records.find_similar_stories("defi", ["u9"]),
            "no_match": await store.query([0.0] * DIMENSION, 10, MetadataFilter({"type": In([])})),
        }
        await engine.records.delete(first)
        await engine.records.delete(first)
        result["after_delete"] = await engine.records.fetch(first)
        result["remaining"] = await store.query([0.0] * DIMENSION, 10, MetadataFilter.where(type="memory"))
        await engine.close()
        return result

    result = asyncio.run(_run())

    fetched = result["fetched"]
    assert isinstance(fetched.metadata, MemoryMetadata)
    assert fetched.metadata.interaction_count == 2
    assert fetched.metadata.used_in_stories == ["story-1"]
    assert len(fetched.vector) == DIMENSION

    assert [match.id for match in result["unused"]] == [result["second"]]
    assert all(match.score == 0.0 for match in result["unused"])
    assert [match.id for match in result["by_user"]] == [result["second"]]
    assert [match.id for match in result["similar_stories"]] == ["story-1-context"]
    assert result["similar_stories"][0].score > 0.99
    assert result["other_stories"] == []
    assert result["no_match"] == []

    assert result["after_delete"] is None
    assert [match.id for match in result["remaining"]] == [result["second"]]


def test_namespaces_are_isolated(tmp_path: Path) -> None:
    metadata = MemoryMetadata(user="alice", content="gm", timestamp="t")

    async def _run():
        store = await _open(tmp_path)
        await store.upsert("mem_1", [0.1] * DIMENSION, metadata, namespace="guild-1")
        return (
            await store.fetch("mem_1", namespace="guild-1"),
            await store.fetch("mem_1"),
            await store.query(
                [0.0] * DIMENSION,
                5,
                MetadataFilter({"used_in_stories": Exists(False), "user": Eq("alice")}),
                namespace="guild-1",
            ),
        )

    in_guild, in_default, scanned = asyncio.run(_run())

    assert in_guild is not None
    assert in_guild.metadata == metadata
    assert in_default is None
    assert [match.id for match in scanned] == ["mem_1"]
