from __future__ import annotations


class StoryMemoryError(Exception):
    """Base error for the memory engine.

    ``retryable`` tells callers whether repeating the same call may succeed.
    """

    retryable: bool = False


class EmbeddingError(StoryMemoryError):
    """The embedding provider is unavailable, timed out, or rejected the input."""

    retryable = True

    def __init__(self, message: str, *, timed_out: bool = False):
        super().__init__(message)
        self.timed_out = timed_out


class StoreError(StoryMemoryError):
    """A vector store read or write failed."""

    retryable = True

    def __init__(self, message: str, *, record_id: str | None = None, timed_out: bool = False):
        super().__init__(message)
        self.record_id = record_id
        self.timed_out = timed_out


class CorruptProfileError(StoryMemoryError):
    """A stored character profile payload could not be parsed."""

    retryable = False

    def __init__(self, message: str, *, record_id: str):
        super().__init__(message)
        self.record_id = record_id


class ChunkOverflowError(StoryMemoryError, ValueError):
    """No breakpoint exists inside a chunking window and hard cuts are disabled."""

    def __init__(self, message: str, *, start: int, max_length: int):
        super().__init__(message)
        self.start = start
        self.max_length = max_length
