"""LanceDB-backed vector store.

One table per namespace. Filterable metadata fields are promoted to typed
columns so filters compile to LanceDB SQL predicates; the full metadata is
kept as a JSON ``payload`` column.
"""

from __future__ import annotations

import asyncio
import re
from typing import Any, Sequence

import lancedb
from lancedb.pydantic import LanceModel, Vector
from loguru import logger
from pydantic import ValidationError

from story_memory.config.schema import VectorStoreConfig
from story_memory.errors import StoreError
from story_memory.vectorstore.base import is_neutral_vector, run_blocking
from story_memory.vectorstore.filters import FILTERABLE_FIELDS, MetadataFilter, sql_literal
from story_memory.vectorstore.records import (
    QueryMatch,
    RecordMetadata,
    VectorRecord,
    dump_metadata,
    parse_metadata,
)

_NAMESPACE_RE = re.compile(r"^[A-Za-z0-9_-]+$")


def stored_record_model(dimension: int) -> type[LanceModel]:
    """Row schema for a store of the given embedding dimension."""

    class StoredRecord(LanceModel):
        id: str
        vector: Vector(dimension)  # type: ignore[valid-type]
        record_type: str
        memory_user: str | None = None
        user_id: str | None = None
        username: str | None = None
        platform: str | None = None
        interaction_type: str | None = None
        interaction_count: int | None = None
        theme: str | None = None
        story_id: str | None = None
        used_in_stories: list[str] | None = None
        characters: list[str] | None = None
        timestamp: str
        payload: str

    return StoredRecord


def record_to_row(record_id: str, vector: Sequence[float], metadata: RecordMetadata) -> dict[str, Any]:
    row: dict[str, Any] = {"id": record_id, "vector": [float(value) for value in vector]}
    for name, spec in FILTERABLE_FIELDS.items():
        value = getattr(metadata, name, None)
        if spec.kind == "list":
            value = list(value) if value else None
        row[spec.column] = value
    row["timestamp"] = metadata.timestamp
    row["payload"] = dump_metadata(metadata)
    return row


def row_to_record(row: dict[str, Any]) -> VectorRecord:
    record_id = str(row["id"])
    try:
        metadata = parse_metadata(row["payload"])
    except (KeyError, ValidationError, ValueError) as exc:
        raise StoreError(f"Stored payload for '{record_id}' is unreadable: {exc}", record_id=record_id) from exc
    return VectorRecord(id=record_id, vector=[float(value) for value in row["vector"]], metadata=metadata)


class LanceDBVectorStore:
    def __init__(self, db: Any, config: VectorStoreConfig, dimension: int):
        self._db = db
        self.config = config
        self.dimension = dimension
        self._schema = stored_record_model(dimension)
        self._tables: dict[str, Any] = {}
        self._semaphore = asyncio.Semaphore(config.max_concurrency)

    @classmethod
    async def open(cls, config: VectorStoreConfig, dimension: int) -> "LanceDBVectorStore":
        """Connects and makes sure the default namespace table exists."""

        semaphore = asyncio.Semaphore(1)
        db = await run_blocking(
            semaphore,
            lancedb.connect,
            str(config.uri),
            timeout=config.timeout_s,
            operation="connect",
        )
        store = cls(db, config, dimension)
        await store._table(config.namespace)
        logger.bind(node="vector_store").info(
            "LanceDB store ready uri={} table={} dimension={}", config.uri, config.table_name, dimension
        )
        return store

    def _table_name(self, namespace: str | None) -> str:
        namespace = namespace if namespace is not None else self.config.namespace
        if not namespace:
            return self.config.table_name
        if not _NAMESPACE_RE.match(namespace):
            raise ValueError(f"Invalid namespace: {namespace!r}")
        return f"{self.config.table_name}__{namespace}"

    async def _table(self, namespace: str | None) -> Any:
        name = self._table_name(namespace)
        table = self._tables.get(name)
        if table is None:
            table = await run_blocking(
                self._semaphore,
                lambda: self._db.create_table(name, schema=self._schema, exist_ok=True),
                timeout=self.config.timeout_s,
                operation="open_table",
            )
            self._tables[name] = table
        return table

    def _timeout(self, timeout: float | None) -> float:
        return timeout if timeout is not None else self.config.timeout_s

    async def upsert(
        self,
        record_id: str,
        vector: Sequence[float],
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if len(vector) != self.dimension:
            raise ValueError(f"Vector dimension {len(vector)} does not match store dimension {self.dimension}")
        table = await self._table(namespace)
        row = record_to_row(record_id, vector, metadata)

        def _merge() -> None:
            (
                table.merge_insert("id")
                .when_matched_update_all()
                .when_not_matched_insert_all()
                .execute([row])
            )

        await run_blocking(
            self._semaphore,
            _merge,
            timeout=self._timeout(timeout),
            operation="upsert",
            record_id=record_id,
        )

    async def fetch(
        self,
        record_id: str,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> VectorRecord | None:
        table = await self._table(namespace)
        predicate = f"id = {sql_literal(record_id)}"
        rows = await run_blocking(
            self._semaphore,
            lambda: table.search().where(predicate).limit(1).to_list(),
            timeout=self._timeout(timeout),
            operation="fetch",
            record_id=record_id,
        )
        if not rows:
            return None
        return row_to_record(rows[0])

    async def update(
        self,
        record_id: str,
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        existing = await self.fetch(record_id, namespace=namespace, timeout=timeout)
        if existing is None:
            raise StoreError(f"Cannot update missing record '{record_id}'", record_id=record_id)
        await self.upsert(record_id, existing.vector, metadata, namespace=namespace, timeout=timeout)

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> list[QueryMatch]:
        if top_k <= 0:
            return []
        table = await self._table(namespace)
        predicate = metadata_filter.to_sql() if metadata_filter else None
        neutral = is_neutral_vector(vector)

        def _search() -> list[dict[str, Any]]:
            if neutral:
                builder = table.search()
                if predicate:
                    builder = builder.where(predicate)
            else:
                builder = table.search(list(vector)).distance_type("cosine")
                if predicate:
                    builder = builder.where(predicate, prefilter=True)
            return builder.limit(top_k).to_list()

        rows = await run_blocking(
            self._semaphore,
            _search,
            timeout=self._timeout(timeout),
            operation="query",
        )

        matches: list[QueryMatch] = []
        for row in rows:
            record = row_to_record(row)
            score = 0.0 if neutral else 1.0 - float(row.get("_distance", 1.0))
            matches.append(QueryMatch(id=record.id, score=score, metadata=record.metadata))
        return matches

    async def delete(
        self,
        record_id: str | None = None,
        *,
        metadata_filter: MetadataFilter | None = None,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if record_id is not None:
            predicate = f"id = {sql_literal(record_id)}"
        elif metadata_filter:
            predicate = metadata_filter.to_sql()
        else:
            raise ValueError("delete requires a record id or a non-empty filter")
        table = await self._table(namespace)
        await run_blocking(
            self._semaphore,
            table.delete,
            predicate,
            timeout=self._timeout(timeout),
            operation="delete",
            record_id=record_id,
        )

    async def close(self) -> None:
        self._tables.clear()
