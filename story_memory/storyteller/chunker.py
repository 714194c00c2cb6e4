"""Splits narrative text into bounded chunks at natural breakpoints.

The scan walks the text in windows of ``max_length`` characters and cuts each
window at the latest sentence end (``". "``, ``"! "``, ``"? "``) or newline
whose last character lies inside the window. A window without any breakpoint
is hard-cut at its boundary, so no chunk ever exceeds ``max_length``.
Whitespace around each cut is trimmed; nothing else is dropped.
"""

from __future__ import annotations

from dataclasses import dataclass

from story_memory.errors import ChunkOverflowError

BREAKPOINTS: tuple[str, ...] = (". ", "! ", "? ", "\n")


@dataclass(frozen=True)
class NarrativeChunk:
    text: str
    start_pos: int
    end_pos: int


def _latest_breakpoint(text: str, start: int, end: int) -> int | None:
    """Index of the last character of the latest delimiter inside ``text[start:end]``."""

    best: int | None = None
    for delimiter in BREAKPOINTS:
        found = text.rfind(delimiter, start, end)
        if found == -1:
            continue
        cut = found + len(delimiter) - 1
        if cut > start and (best is None or cut > best):
            best = cut
    return best


def _emit(chunks: list[NarrativeChunk], text: str, start: int, stop: int) -> None:
    raw = text[start:stop]
    stripped = raw.strip()
    if not stripped:
        return
    offset = start + (len(raw) - len(raw.lstrip()))
    chunks.append(NarrativeChunk(text=stripped, start_pos=offset, end_pos=offset + len(stripped)))


def split_narrative(text: str, max_length: int, *, strict: bool = False) -> list[NarrativeChunk]:
    if max_length < 1:
        raise ValueError("max_length must be >= 1")

    chunks: list[NarrativeChunk] = []
    start = 0
    total = len(text)
    while start < total:
        end = start + max_length
        if end >= total:
            _emit(chunks, text, start, total)
            break

        cut = _latest_breakpoint(text, start, end)
        if cut is None:
            if strict:
                raise ChunkOverflowError(
                    f"No breakpoint within {max_length} characters at position {start}",
                    start=start,
                    max_length=max_length,
                )
            cut = end - 1

        _emit(chunks, text, start, cut + 1)
        start = cut + 1
    return chunks


def split_text(text: str, max_length: int, *, strict: bool = False) -> list[str]:
    return [chunk.text for chunk in split_narrative(text, max_length, strict=strict)]
