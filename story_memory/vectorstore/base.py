from __future__ import annotations

import asyncio
from typing import Any, Callable, Protocol, Sequence, TypeVar, runtime_checkable

from story_memory.errors import StoreError
from story_memory.vectorstore.filters import MetadataFilter
from story_memory.vectorstore.records import QueryMatch, RecordMetadata, VectorRecord

T = TypeVar("T")


@runtime_checkable
class VectorStore(Protocol):
    """Persistent id -> (vector, metadata) mapping with filtered similarity search.

    ``update`` replaces metadata wholesale; merging is the caller's job.
    Every method accepts an optional deadline in seconds.
    """

    dimension: int

    async def upsert(
        self,
        record_id: str,
        vector: Sequence[float],
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None: ...

    async def fetch(
        self,
        record_id: str,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> VectorRecord | None: ...

    async def update(
        self,
        record_id: str,
        metadata: RecordMetadata,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None: ...

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        metadata_filter: MetadataFilter | None = None,
        *,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> list[QueryMatch]: ...

    async def delete(
        self,
        record_id: str | None = None,
        *,
        metadata_filter: MetadataFilter | None = None,
        namespace: str | None = None,
        timeout: float | None = None,
    ) -> None: ...

    async def close(self) -> None: ...


def is_neutral_vector(vector: Sequence[float]) -> bool:
    """A zero vector asks for metadata-ranked retrieval instead of similarity."""

    return not any(vector)


async def run_blocking(
    semaphore: asyncio.Semaphore,
    fn: Callable[..., T],
    *args: Any,
    timeout: float,
    operation: str,
    record_id: str | None = None,
) -> T:
    """Runs a blocking store call on a worker thread under a deadline.

    Errors come back as ``StoreError``. A timed-out write may still land once
    the worker thread finishes; callers treat that as a retryable failure.
    """

    async def _call() -> T:
        async with semaphore:
            return await asyncio.to_thread(fn, *args)

    try:
        return await asyncio.wait_for(_call(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise StoreError(
            f"Vector store {operation} timed out after {timeout:.1f}s",
            record_id=record_id,
            timed_out=True,
        ) from exc
    except StoreError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise StoreError(f"Vector store {operation} failed: {exc}", record_id=record_id) from exc
