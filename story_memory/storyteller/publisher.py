from __future__ import annotations

from story_memory.config.schema import PlatformFormat
from story_memory.domain.models import StoryStructure
from story_memory.storyteller.chunker import split_text


def story_length(story: StoryStructure) -> int:
    """Length of title, introduction, chapter bodies and conclusion; separators and chapter titles excluded."""

    return (
        len(story.title)
        + len(story.introduction)
        + sum(len(chapter.content) for chapter in story.chapters)
        + len(story.conclusion)
    )


def validate_length(story: StoryStructure, story_format: PlatformFormat) -> bool:
    return story_length(story) <= story_format.max_length


def split_for_platform(story: StoryStructure, story_format: PlatformFormat) -> list[str]:
    """Posting order: title with introduction, each chapter, conclusion."""

    segments = [f"{story.title}\n\n{story.introduction}"]
    for chapter in story.chapters:
        body = f"{chapter.title}\n\n{chapter.content}"
        if len(body) <= story_format.chapter_length:
            segments.append(body)
        else:
            segments.extend(split_text(body, story_format.chapter_length))
    segments.append(story.conclusion)
    return segments


def adjust_story_length(story: StoryStructure, story_format: PlatformFormat) -> StoryStructure:
    """Trims chapter bodies at sentence breakpoints until the story fits ``max_length``.

    Each chapter gets an equal share of what the title, introduction and
    conclusion leave over. Stories that already fit are returned unchanged.
    """

    if validate_length(story, story_format) or not story.chapters:
        return story

    fixed = len(story.title) + len(story.introduction) + len(story.conclusion)
    share = (story_format.max_length - fixed) // len(story.chapters)
    chapters = []
    for chapter in story.chapters:
        content = chapter.content
        if len(content) > share:
            parts = split_text(content, share) if share > 0 else []
            content = parts[0] if parts else ""
        chapters.append(chapter.model_copy(update={"content": content}))
    return story.model_copy(update={"chapters": chapters})
