from __future__ import annotations

import asyncio
import time

import pytest

from story_memory.config.schema import VectorStoreConfig
from story_memory.errors import StoreError
from story_memory.vectorstore.base import is_neutral_vector, run_blocking
from story_memory.vectorstore.lancedb_store import LanceDBVectorStore, record_to_row, row_to_record, stored_record_model
from story_memory.vectorstore.records import MemoryMetadata, ProfileMetadata


def _memory() -> MemoryMetadata:
    return MemoryMetadata(
        user="alice",
        user_id="u1",
        content="gm",
        timestamp="2024-01-01T00:00:00+00:00",
        platform="twitter",
        interaction_count=2,
    )


def test_record_to_row_promotes_filterable_fields() -> None:
    row = record_to_row("mem_1_abc", [0.5, 0.25], _memory())

    assert row["id"] == "mem_1_abc"
    assert row["record_type"] == "memory"
    assert row["memory_user"] == "alice"
    assert row["interaction_count"] == 2
    assert row["used_in_stories"] is None
    assert row["characters"] is None
    assert row["timestamp"] == "2024-01-01T00:00:00+00:00"


def test_row_to_record_restores_metadata() -> None:
    metadata = ProfileMetadata(user_id="u1", username="alice", profile="{}", timestamp="t")

    record = row_to_record(record_to_row("profile-u1", [1, 0], metadata))

    assert record.id == "profile-u1"
    assert record.vector == [1.0, 0.0]
    assert record.metadata == metadata


def test_row_to_record_rejects_unreadable_payload() -> None:
    with pytest.raises(StoreError) as exc_info:
        row_to_record({"id": "mem_1", "vector": [0.0], "payload": "garbage"})

    assert exc_info.value.record_id == "mem_1"
    assert exc_info.value.retryable is True


def test_stored_record_model_has_promoted_columns() -> None:
    fields = set(stored_record_model(4).model_fields)

    assert {"id", "vector", "record_type", "memory_user", "used_in_stories", "characters", "payload"} <= fields


def test_table_name_per_namespace() -> None:
    store = LanceDBVectorStore(db=None, config=VectorStoreConfig(), dimension=4)

    assert store._table_name(None) == "story_memory"
    assert store._table_name("guild-1") == "story_memory__guild-1"
    with pytest.raises(ValueError):
        store._table_name("bad name!")


def test_delete_requires_id_or_filter() -> None:
    store = LanceDBVectorStore(db=None, config=VectorStoreConfig(), dimension=4)

    with pytest.raises(ValueError):
        asyncio.run(store.delete())


def test_upsert_rejects_wrong_dimension() -> None:
    store = LanceDBVectorStore(db=None, config=VectorStoreConfig(), dimension=4)

    with pytest.raises(ValueError, match="dimension"):
        asyncio.run(store.upsert("mem_1", [0.1, 0.2], _memory()))


def test_is_neutral_vector() -> None:
    assert is_neutral_vector([0.0, 0.0])
    assert not is_neutral_vector([0.0, 0.1])


def test_run_blocking_wraps_errors_and_timeouts() -> None:
    def _boom() -> None:
        raise OSError("disk full")

    with pytest.raises(StoreError, match="upsert failed") as failed:
        asyncio.run(run_blocking(asyncio.Semaphore(1), _boom, timeout=1.0, operation="upsert", record_id="mem_1"))
    assert failed.value.record_id == "mem_1"
    assert failed.value.timed_out is False

    with pytest.raises(StoreError) as timed_out:
        asyncio.run(run_blocking(asyncio.Semaphore(1), time.sleep, 0.5, timeout=0.05, operation="query"))
    assert timed_out.value.timed_out is True
