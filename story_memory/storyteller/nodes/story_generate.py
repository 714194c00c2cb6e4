from __future__ import annotations

from typing import Any

import orjson
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from story_memory.config.schema import AppConfigRoot, PlatformFormat
from story_memory.domain.hashing import story_input_hash
from story_memory.domain.models import Chapter, CharacterDescription, StoryContext, StoryStructure
from story_memory.llm.factory import make_cache_key
from story_memory.storyteller.chunker import split_text
from story_memory.storyteller.json_utils import safe_load_json_dict
from story_memory.storyteller.prompts.story import STORY_PROMPT_VERSION, story_prompt
from story_memory.storyteller.state import StoryState


class ChapterDraft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    content: str = ""


class StoryDraft(BaseModel):
    model_config = ConfigDict(extra="ignore")

    title: str = ""
    introduction: str = ""
    chapters: list[ChapterDraft] = Field(default_factory=list)
    conclusion: str = ""


def chapter_plan(characters: list[CharacterDescription], num_chapters: int) -> list[list[CharacterDescription]]:
    """Featured characters per chapter: a window of two rotating through the cast."""

    if not characters:
        return [[] for _ in range(num_chapters)]
    size = min(2, len(characters))
    return [
        [characters[(index + offset) % len(characters)] for offset in range(size)]
        for index in range(num_chapters)
    ]


def _handle(character: CharacterDescription, mentions: bool) -> str:
    return f"@{character.username}" if mentions else character.username


def _describe(character: CharacterDescription) -> str:
    traits = " and ".join(character.traits) if character.traits else "mysterious"
    return f"the {traits} {character.role}"


def _fit(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    parts = split_text(text, limit)
    return parts[0] if parts else ""


def template_story(
    context: StoryContext,
    characters: list[CharacterDescription],
    story_format: PlatformFormat,
    *,
    mentions: bool = True,
) -> StoryStructure:
    """Deterministic story used when no LLM is configured or the LLM call fails."""

    lead = characters[0].username if characters else "The community"
    intros = ". ".join(f"{_handle(c, mentions)}, {_describe(c)}" for c in characters)
    introduction = f"In the realm of {context.setting}, a new tale unfolds."
    if intros:
        introduction += f" {intros}. Together, they embark on an epic journey..."

    chapters: list[Chapter] = []
    for index, featured in enumerate(chapter_plan(characters, story_format.num_chapters)):
        names = " and ".join(_handle(c, mentions) for c in featured) or "A lone wanderer"
        content = f"{names} pressed deeper into {context.setting}, drawn on by whispers of {context.theme}."
        if context.previous_interactions:
            memory = context.previous_interactions[index % len(context.previous_interactions)]
            content += f' Someone remembered the words: "{memory}".'
        chapters.append(
            Chapter(
                title=f"Chapter {index + 1}",
                content=_fit(content, story_format.chapter_length),
                featured_characters=[c.user_id for c in featured],
            )
        )

    return StoryStructure(
        title=f"{lead}'s Adventure in {context.setting}",
        introduction=introduction,
        chapters=chapters,
        conclusion="And so, our heroes' journey comes to an end...",
    )


def merge_draft(draft: StoryDraft, fallback: StoryStructure) -> StoryStructure:
    """Takes LLM prose where present; chapter count and featured characters stay from the plan."""

    chapters: list[Chapter] = []
    for index, planned in enumerate(fallback.chapters):
        drafted = draft.chapters[index] if index < len(draft.chapters) else None
        chapters.append(
            Chapter(
                title=(drafted.title.strip() if drafted else "") or planned.title,
                content=(drafted.content.strip() if drafted else "") or planned.content,
                featured_characters=list(planned.featured_characters),
            )
        )
    return StoryStructure(
        title=draft.title.strip() or fallback.title,
        introduction=draft.introduction.strip() or fallback.introduction,
        chapters=chapters,
        conclusion=draft.conclusion.strip() or fallback.conclusion,
    )


def _characters_payload(characters: list[CharacterDescription]) -> list[dict[str, Any]]:
    return [
        {"username": c.username, "role": c.role, "traits": c.traits, "style": c.style}
        for c in characters
    ]


async def run(state: StoryState, *, config: AppConfigRoot, llm_client: Any | None = None) -> dict:
    story_format = config.resolve_format(state.get("format_name"))
    context = state["context"]
    characters = state.get("characters", [])
    mentions = config.storyteller.include_mentions
    fallback = template_story(context, characters, story_format, mentions=mentions)
    node_log = logger.bind(node="story_generate", story_id=state.get("story_id"))

    if llm_client is None:
        return {"story": fallback, "story_llm_calls": 0, "story_llm_cache_hit": False}

    try:
        system, user_template = story_prompt(
            language=config.storyteller.language,
            style=config.storyteller.style,
            genre_elements=config.storyteller.genre_elements,
            include_hashtags=config.storyteller.include_hashtags,
            include_mentions=mentions,
            num_chapters=story_format.num_chapters,
            chapter_length=story_format.chapter_length,
        )
        plan = [
            {"chapter": index + 1, "featured": [c.username for c in featured]}
            for index, featured in enumerate(chapter_plan(characters, story_format.num_chapters))
        ]
        characters_json = orjson.dumps(_characters_payload(characters)).decode("utf-8")
        interactions_json = orjson.dumps(context.previous_interactions).decode("utf-8")
        plan_json = orjson.dumps(plan).decode("utf-8")
        user = user_template.format(
            characters=characters_json,
            setting=context.setting,
            theme=context.theme,
            previous_interactions=interactions_json,
            chapter_plan=plan_json,
        )

        input_hash = story_input_hash(
            [c.user_id for c in characters],
            state.get("format_name", ""),
            "\n".join([context.setting, context.theme, interactions_json, config.storyteller.style]),
        )
        cache_key = make_cache_key(
            "story_generate",
            llm_client.model_identifier,
            STORY_PROMPT_VERSION,
            input_hash,
            str(config.storyteller.temperature),
        )
        node_log.bind(cache_key=cache_key[:12]).debug("Invoking story draft generation")
        llm_response, payload = await llm_client.complete_json_async(
            system,
            user,
            cache_key,
            safe_load_json_dict,
            context={"node": "story_generate", "input_hash": input_hash},
        )
        story = merge_draft(StoryDraft.model_validate(payload), fallback)
        return {
            "story": story,
            "story_llm_calls": 1,
            "story_llm_cache_hit": bool(getattr(llm_response, "cached", False)),
        }
    except Exception as exc:  # noqa: BLE001
        node_log.exception("Story generation fallback due to LLM error: {}", exc)
        return {"story": fallback, "story_llm_calls": 1, "story_llm_cache_hit": False}
