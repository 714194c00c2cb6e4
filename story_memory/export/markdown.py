from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
import re

import orjson

from story_memory.config.schema import AppConfigRoot
from story_memory.domain.models import StoryStructure
from story_memory.storyteller.service import StoryRun


@dataclass
class ExportResult:
    output_dir: Path
    story_path: Path
    segments_dir: Path
    story_json_path: Path
    segment_paths: list[Path] = field(default_factory=list)


def _safe_filename(text: str) -> str:
    sanitized = re.sub(r"[\\/:*?\"<>|]+", "_", text).strip()
    sanitized = re.sub(r"\s+", "_", sanitized)
    return sanitized or "untitled"


def _render_story(story: StoryStructure) -> str:
    lines = [f"# {story.title or 'Untitled'}", "", story.introduction, ""]
    for chapter in story.chapters:
        lines.append(f"## {chapter.title}")
        lines.append("")
        lines.append(chapter.content)
        if chapter.featured_characters:
            lines.append("")
            lines.append(f"_Featuring: {', '.join(chapter.featured_characters)}_")
        lines.append("")
    if story.conclusion:
        lines.append(story.conclusion)
        lines.append("")
    return "\n".join(lines)


def _render_segment(index: int, total: int, segment: str) -> str:
    return f"<!-- segment {index + 1}/{total} -->\n\n{segment}\n"


def export_story_markdown(run: StoryRun, config: AppConfigRoot) -> ExportResult:
    """Writes ``story.md``, ``story.json`` and one markdown file per segment."""

    output_dir = (config.app.output_dir / _safe_filename(run.story_id)).resolve()
    segments_dir = output_dir / "segments"
    segments_dir.mkdir(parents=True, exist_ok=True)

    story_path = output_dir / "story.md"
    story_path.write_text(_render_story(run.story), encoding="utf-8")

    segment_paths: list[Path] = []
    total = len(run.segments)
    for index, segment in enumerate(run.segments):
        path = segments_dir / f"{index + 1:03d}.md"
        path.write_text(_render_segment(index, total, segment), encoding="utf-8")
        segment_paths.append(path)

    story_json_path = output_dir / "story.json"
    story_json_path.write_bytes(
        orjson.dumps(
            {
                "story_id": run.story_id,
                "format": run.format_name,
                "characters": run.characters,
                "theme": run.theme,
                "setting": run.setting,
                "length_valid": run.length_valid,
                "story": run.story.model_dump(mode="json"),
                "segments": run.segments,
            },
            option=orjson.OPT_INDENT_2,
        )
    )

    return ExportResult(
        output_dir=output_dir,
        story_path=story_path,
        segments_dir=segments_dir,
        story_json_path=story_json_path,
        segment_paths=segment_paths,
    )
