from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Any

from loguru import logger
from rich.console import Console
from rich.panel import Panel
from rich.pretty import Pretty
from rich.table import Table

from story_memory.config import load_config
from story_memory.config.loader import masked_env_snapshot
from story_memory.config.schema import AppConfigRoot
from story_memory.domain.ids import epoch_ms
from story_memory.domain.models import UserInteraction
from story_memory.export.markdown import export_story_markdown
from story_memory.llm.factory import build_chat_client
from story_memory.memory.engine import MemoryEngine, engine_scope
from story_memory.storyteller.chunker import split_narrative
from story_memory.storyteller.service import tell_story
from story_memory.utils.logging import setup_logging
from story_memory.vectorstore.records import QueryMatch

console = Console()

PLATFORMS = ["twitter", "arena", "discord"]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="story-memory")
    parser.add_argument("--config", type=Path, default=None, help="Path to custom config YAML")
    parser.add_argument("--profile", type=str, default=None, help="Config profile name")
    parser.add_argument("--output-dir", type=Path, default=None, help="Override output directory")
    parser.add_argument("--data-dir", type=Path, default=None, help="Override data directory")
    parser.add_argument("--store-uri", type=Path, default=None, help="Override vector store location")
    parser.add_argument("--namespace", type=str, default=None, help="Vector store namespace")

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("config", help="Validate and print effective config")

    remember_parser = subparsers.add_parser("remember", help="Store a free-form memory")
    remember_parser.add_argument("--user", type=str, required=True, help="Username the memory belongs to")
    remember_parser.add_argument("--text", type=str, required=True, help="Memory text")
    remember_parser.add_argument("--user-id", type=str, default=None, help="Platform user id")
    remember_parser.add_argument("--platform", choices=PLATFORMS, default=None, help="Source platform")

    interact_parser = subparsers.add_parser("interact", help="Record an interaction and update the profile")
    interact_parser.add_argument("--user-id", type=str, required=True, help="Platform user id")
    interact_parser.add_argument("--username", type=str, required=True, help="Display username")
    interact_parser.add_argument("--content", type=str, required=True, help="Interaction text")
    interact_parser.add_argument("--platform", choices=PLATFORMS, default="twitter", help="Source platform")
    interact_parser.add_argument("--interaction-type", type=str, default=None, help="reply, mention, quote, ...")
    interact_parser.add_argument("--sentiment", type=str, default=None, help="Known sentiment label")
    interact_parser.add_argument("--topic", action="append", default=[], help="Topic tag (repeatable)")
    interact_parser.add_argument("--interest", action="append", default=[], help="Interest tag (repeatable)")

    profile_parser = subparsers.add_parser("profile", help="Show a character profile")
    profile_parser.add_argument("--user-id", type=str, required=True, help="Platform user id")
    profile_parser.add_argument("--similar", action="store_true", help="Also list similar profiles")

    similar_parser = subparsers.add_parser("similar", help="Find memories similar to a text")
    similar_parser.add_argument("--text", type=str, required=True, help="Query text")
    similar_parser.add_argument("--limit", type=int, default=None, help="Maximum matches")
    similar_parser.add_argument("--user", type=str, default=None, help="Only memories of this username")
    similar_parser.add_argument("--platform", choices=PLATFORMS, default=None, help="Only this platform")

    context_parser = subparsers.add_parser("context", help="Assemble story context for characters")
    context_parser.add_argument("--ids", nargs="*", default=[], help="Character user ids")

    split_parser = subparsers.add_parser("split", help="Split a text file into bounded chunks")
    split_parser.add_argument("--input", type=Path, required=True, help="Text file to split")
    split_parser.add_argument("--max-length", type=int, required=True, help="Maximum chunk length")
    split_parser.add_argument("--strict", action="store_true", help="Fail instead of hard-cutting")

    storytell_parser = subparsers.add_parser("storytell", help="Generate and publish a story")
    storytell_parser.add_argument("--participants", nargs="+", required=True, help="Participant user ids")
    storytell_parser.add_argument("--format", type=str, default=None, help="Story format name")
    storytell_parser.add_argument("--no-llm", action="store_true", help="Use template prose only")
    storytell_parser.add_argument("--no-export", action="store_true", help="Skip markdown export")

    recurring_parser = subparsers.add_parser("recurring", help="List recurring characters")
    recurring_parser.add_argument("--min-interactions", type=int, default=None, help="Interaction threshold")
    recurring_parser.add_argument("--platform", choices=PLATFORMS, default=None, help="Only this platform")

    unused_parser = subparsers.add_parser("unused", help="List memories never used in a story")
    unused_parser.add_argument("--limit", type=int, default=None, help="Maximum matches")

    forget_parser = subparsers.add_parser("forget", help="Delete a record by id")
    forget_parser.add_argument("--id", dest="record_id", type=str, required=True, help="Record id")

    return parser


def _build_overrides(args: argparse.Namespace) -> dict[str, Any]:
    overrides: dict[str, Any] = {}
    app_overrides: dict[str, Any] = {}
    if args.output_dir:
        app_overrides["output_dir"] = str(args.output_dir)
    if args.data_dir:
        app_overrides["data_dir"] = str(args.data_dir)
    if app_overrides:
        overrides["app"] = app_overrides

    store_overrides: dict[str, Any] = {}
    if args.store_uri:
        store_overrides["uri"] = str(args.store_uri)
    if args.namespace:
        store_overrides["namespace"] = args.namespace
    if store_overrides:
        overrides["vector_store"] = store_overrides
    return overrides


def _print_config(config: AppConfigRoot) -> None:
    console.print(Panel(Pretty(config.model_dump(mode="json")), title="Effective Config"))
    console.print(Panel(Pretty(masked_env_snapshot(config)), title="Env Snapshot"))


def _print_matches(title: str, matches: list[QueryMatch]) -> None:
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Score")
    table.add_column("Who")
    table.add_column("Count")
    table.add_column("Content")
    for match in matches:
        metadata = match.metadata
        who = getattr(metadata, "user", None) or getattr(metadata, "username", None) or ", ".join(
            getattr(metadata, "characters", []) or []
        )
        content = getattr(metadata, "content", None) or getattr(metadata, "title", "")
        table.add_row(
            match.id,
            metadata.type,
            f"{match.score:.3f}",
            who or "-",
            str(getattr(metadata, "interaction_count", "-")),
            content[:80],
        )
    console.print(table)


def _split_file(args: argparse.Namespace) -> None:
    text = args.input.read_text(encoding="utf-8")
    chunks = split_narrative(text, args.max_length, strict=args.strict)
    table = Table(title=f"Chunks ({len(chunks)})", show_header=True, header_style="bold")
    table.add_column("#")
    table.add_column("Span")
    table.add_column("Length")
    table.add_column("Text")
    for index, chunk in enumerate(chunks, start=1):
        table.add_row(str(index), f"{chunk.start_pos}-{chunk.end_pos}", str(len(chunk.text)), chunk.text[:80])
    console.print(table)


async def _run_engine_command(args: argparse.Namespace, config: AppConfigRoot, engine: MemoryEngine) -> None:
    if args.command == "remember":
        record_id = await engine.records.store(
            args.text,
            {"user": args.user, "user_id": args.user_id, "platform": args.platform},
        )
        console.print(Panel(record_id, title="Memory stored"))
        return

    if args.command == "interact":
        interaction = UserInteraction(
            user_id=args.user_id,
            username=args.username,
            content=args.content,
            platform=args.platform,
            timestamp=epoch_ms(),
            sentiment=args.sentiment,
            interaction_type=args.interaction_type,
            topics=args.topic,
            interests=args.interest,
        )
        record_id = await engine.records.store_interaction(interaction)
        profile = await engine.profiles.update(interaction)
        table = Table(title="Interaction Recorded", show_header=True, header_style="bold")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Record ID", record_id)
        table.add_row("Profile interactions", str(len(profile.interactions)))
        table.add_row("Traits", ", ".join(profile.traits) or "-")
        table.add_row("Interests", ", ".join(profile.interests) or "-")
        table.add_row("Style", profile.style)
        console.print(table)
        return

    if args.command == "profile":
        profile = await engine.profiles.get(args.user_id)
        if profile is None:
            console.print(Panel(f"No profile for {args.user_id}", title="Profile"))
            return
        console.print(Panel(Pretty(profile.model_dump(mode="json", exclude={"interactions"})), title="Profile"))
        if args.similar:
            _print_matches("Similar Profiles", await engine.profiles.find_similar(args.user_id))
        return

    if args.command == "similar":
        equals = {key: value for key, value in (("user", args.user), ("platform", args.platform)) if value}
        _print_matches("Similar Memories", await engine.records.find_similar(args.text, args.limit, **equals))
        return

    if args.command == "context":
        context = await engine.context.build(args.ids)
        console.print(Panel(Pretty(context), title="Story Context"))
        return

    if args.command == "storytell":
        llm_client = None
        if not args.no_llm:
            try:
                llm_client = build_chat_client(config)
            except ValueError as exc:
                logger.warning("Chat client unavailable, using template prose: {}", exc)
        try:
            run = await tell_story(engine, args.participants, args.format, llm_client=llm_client)
        finally:
            if llm_client is not None:
                llm_client.close()
        export_dir = "(skipped)"
        if not args.no_export:
            export_dir = str(export_story_markdown(run, config).output_dir)

        table = Table(title="Storytell Summary", show_header=True, header_style="bold")
        table.add_column("Metric")
        table.add_column("Value")
        table.add_row("Story ID", run.story_id)
        table.add_row("Title", run.story.title)
        table.add_row("Format", run.format_name)
        table.add_row("Characters", ", ".join(run.characters) or "-")
        table.add_row("Theme / setting", f"{run.theme} / {run.setting}")
        table.add_row("Segments", str(len(run.segments)))
        table.add_row("Length valid (adjusted)", f"{run.length_valid} ({run.length_adjusted})")
        table.add_row("LLM calls (cache hit)", f"{run.llm_calls} ({run.llm_cache_hit})")
        table.add_row("References attached", str(run.references_attached))
        table.add_row("Runtime (s)", f"{run.runtime_seconds:.2f}")
        table.add_row("Export", export_dir)
        console.print(table)
        return

    if args.command == "recurring":
        matches = await engine.records.find_recurring_characters(args.min_interactions, args.platform)
        _print_matches("Recurring Characters", matches)
        return

    if args.command == "unused":
        _print_matches("Unused Ideas", await engine.records.get_unused_ideas(args.limit))
        return

    if args.command == "forget":
        await engine.records.delete(args.record_id)
        console.print(Panel(args.record_id, title="Deleted"))
        return

    raise ValueError(f"Unsupported command: {args.command}")


async def _main_async() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    config = load_config(
        config_path=args.config,
        profile=args.profile,
        overrides=_build_overrides(args),
    )

    setup_logging(config.app.log_level)
    logger.info("Loaded configuration")

    if args.command == "config":
        _print_config(config)
        return

    if args.command == "split":
        _split_file(args)
        return

    async with engine_scope(config) as engine:
        await _run_engine_command(args, config, engine)


def main() -> None:
    asyncio.run(_main_async())


if __name__ == "__main__":
    main()
