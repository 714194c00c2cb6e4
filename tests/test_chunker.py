from __future__ import annotations

import pytest

from story_memory.errors import ChunkOverflowError
from story_memory.storyteller.chunker import split_narrative, split_text

SAMPLES = [
    "A. B. C.",
    "Hello world. Bye now.",
    "Hi! Yes? No. Done",
    "line one\nline two\nline three",
    "abcdefghij",
    "The arena opened at dawn. Nobody knew why!  Was it the rumor? Or the rug?\n\nStill, they came.",
]


def test_split_text_empty_returns_empty() -> None:
    assert split_text("", 4) == []
    assert split_text("   \n ", 4) == []


def test_split_text_short_text_single_chunk() -> None:
    chunks = split_narrative("abcd", 10)

    assert len(chunks) == 1
    assert chunks[0].text == "abcd"
    assert chunks[0].start_pos == 0
    assert chunks[0].end_pos == 4


def test_split_text_cuts_after_sentence_ends() -> None:
    assert split_text("A. B. C.", 4) == ["A.", "B.", "C."]


def test_split_text_prefers_latest_breakpoint_in_window() -> None:
    assert split_text("Hi! Yes? No. Done", 13) == ["Hi! Yes? No.", "Done"]


def test_split_text_cuts_at_newlines() -> None:
    assert split_text("line one\nline two\nline three", 12) == ["line one", "line two", "line three"]


def test_split_text_hard_cuts_without_breakpoint() -> None:
    assert split_text("abcdefghij", 4) == ["abcd", "efgh", "ij"]


def test_split_text_strict_raises_without_breakpoint() -> None:
    with pytest.raises(ChunkOverflowError) as exc_info:
        split_text("abcdefghij", 4, strict=True)

    assert exc_info.value.start == 0
    assert exc_info.value.max_length == 4


def test_split_text_rejects_non_positive_length() -> None:
    with pytest.raises(ValueError):
        split_text("anything", 0)


def test_chunk_positions_point_into_source() -> None:
    text = "Hello world. Bye now."
    chunks = split_narrative(text, 14)

    assert [(c.start_pos, c.end_pos) for c in chunks] == [(0, 12), (13, 21)]
    for chunk in chunks:
        assert text[chunk.start_pos : chunk.end_pos] == chunk.text


@pytest.mark.parametrize("text", SAMPLES)
@pytest.mark.parametrize("max_length", [1, 2, 3, 5, 8, 13, 21, 40])
def test_chunks_respect_bound_and_keep_all_text(text: str, max_length: int) -> None:
    chunks = split_narrative(text, max_length)

    assert all(0 < len(chunk.text) <= max_length for chunk in chunks)
    assert "".join("".join(c.text.split()) for c in chunks) == "".join(text.split())
    for chunk in chunks:
        assert text[chunk.start_pos : chunk.end_pos] == chunk.text
