from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import cast

import pytest

from story_memory.config.schema import AppConfigRoot
from story_memory.domain.models import Chapter, CharacterDescription, StoryContext, StoryStructure
from story_memory.storyteller.json_utils import safe_load_json_dict
from story_memory.storyteller.nodes import length_adjust, story_generate
from story_memory.storyteller.prompts.story import story_prompt
from story_memory.storyteller.state import StoryState


def _characters() -> list[CharacterDescription]:
    return [
        CharacterDescription(user_id="u1", username="alice", traits=["curious"], style="casual", role="protagonist"),
        CharacterDescription(user_id="u2", username="bob", traits=[], style="energetic", role="ally"),
        CharacterDescription(user_id="u3", username="carol", traits=["builder"], style="casual", role="ally"),
    ]


def _state(format_name: str = "arena_long") -> StoryState:
    return cast(
        StoryState,
        {
            "story_id": "story-1",
            "participants": ["u1", "u2", "u3"],
            "format_name": format_name,
            "context": StoryContext(
                characters=["u1", "u2", "u3"],
                theme="defi",
                setting="neon-lit digital frontier",
                previous_interactions=["alice: gm", "bob: wagmi"],
                interaction_ids=["interaction-u1-1", "interaction-u2-2"],
            ),
            "characters": _characters(),
        },
    )


class _FakeLLMClient:
    model_identifier = "fake/provider/model"

    def __init__(self, text: str | None = None, error: Exception | None = None):
        self.text = text
        self.error = error
        self.prompts: list[str] = []

    async def complete_json_async(self, system_prompt, user_prompt, cache_key, parser, *, context=None):
        _ = (system_prompt, cache_key, context)
        self.prompts.append(user_prompt)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(text=self.text, cached=False), parser(self.text)


def test_safe_load_json_dict_parses_code_fence() -> None:
    payload = """```json
    {"title":"ok",}
    ```"""
    assert safe_load_json_dict(payload) == {"title": "ok"}


@pytest.mark.parametrize("bad", ["", "   ", "[1, 2]", "no braces here"])
def test_safe_load_json_dict_rejects_bad_payloads(bad: str) -> None:
    with pytest.raises(ValueError):
        safe_load_json_dict(bad)


def test_story_prompt_template_format_safe() -> None:
    _, template = story_prompt(
        language="en",
        style="noir",
        genre_elements=["mystery"],
        include_hashtags=False,
        include_mentions=True,
        num_chapters=3,
        chapter_length=500,
    )

    rendered = template.format(
        characters="[]",
        setting="harbor",
        theme="trust",
        previous_interactions="[]",
        chapter_plan="[]",
    )

    assert '"chapters": [{"title": "string", "content": "string"}]' in rendered
    assert "{setting}" not in rendered
    assert "Do not use hashtags." in rendered


def test_chapter_plan_rotates_pairs() -> None:
    plan = story_generate.chapter_plan(_characters(), 4)

    assert [[c.user_id for c in chapter] for chapter in plan] == [
        ["u1", "u2"],
        ["u2", "u3"],
        ["u3", "u1"],
        ["u1", "u2"],
    ]
    assert story_generate.chapter_plan([], 2) == [[], []]


def test_story_generate_without_llm_uses_template() -> None:
    config = AppConfigRoot()
    result = asyncio.run(story_generate.run(_state(), config=config))

    story = result["story"]
    assert result["story_llm_calls"] == 0
    assert story.title == "alice's Adventure in neon-lit digital frontier"
    assert story.introduction.startswith("In the realm of neon-lit digital frontier, a new tale unfolds.")
    assert "@alice" in story.introduction
    assert len(story.chapters) == config.resolve_format("arena_long").num_chapters
    assert story.chapters[0].featured_characters == ["u1", "u2"]
    assert story.conclusion == "And so, our heroes' journey comes to an end..."


def test_story_generate_merges_llm_draft() -> None:
    client = _FakeLLMClient(
        '{"title":"The Wallet Heist","introduction":"It began at block 1.",'
        '"chapters":[{"title":"Ignition","content":"alice found the key."}],"conclusion":""}'
    )
    result = asyncio.run(story_generate.run(_state(), config=AppConfigRoot(), llm_client=client))

    story = result["story"]
    assert result["story_llm_calls"] == 1
    assert story.title == "The Wallet Heist"
    assert story.chapters[0].title == "Ignition"
    assert story.chapters[0].content == "alice found the key."
    assert story.chapters[1].title == "Chapter 2"
    assert story.conclusion == "And so, our heroes' journey comes to an end..."
    assert "neon-lit digital frontier" in client.prompts[0]


def test_story_generate_llm_failure_falls_back_to_template() -> None:
    client = _FakeLLMClient(error=RuntimeError("LLM call failed after retries"))
    result = asyncio.run(story_generate.run(_state(), config=AppConfigRoot(), llm_client=client))

    assert result["story_llm_calls"] == 1
    assert result["story_llm_cache_hit"] is False
    assert result["story"].title == "alice's Adventure in neon-lit digital frontier"


def test_template_chapters_respect_chapter_length() -> None:
    config = AppConfigRoot()
    story_format = config.resolve_format("tweet_series")
    context = _state()["context"]
    context.previous_interactions = ["x" * 1_000]

    story = story_generate.template_story(context, _characters(), story_format)

    assert all(len(chapter.content) <= story_format.chapter_length for chapter in story.chapters)


def test_length_adjust_trims_or_reports() -> None:
    config = AppConfigRoot.model_validate(
        {
            "story_formats": {
                "tiny": {"type": "tiny", "max_length": 60, "chapter_length": 30, "num_chapters": 2},
            }
        }
    )
    long_story = StoryStructure(
        title="T",
        introduction="Intro.",
        chapters=[
            Chapter(title="C1", content="Short one."),
            Chapter(title="C2", content="Sentence one is here. Sentence two is here. Sentence three."),
        ],
        conclusion="End.",
    )
    state = cast(StoryState, {"story_id": "story-1", "participants": ["u1"], "format_name": "tiny", "story": long_story})

    adjusted = asyncio.run(length_adjust.run(state, config=config))
    assert adjusted["length_valid"] is True
    assert adjusted["length_adjusted"] is True
    assert adjusted["story"].chapters[1].content == "Sentence one is here."

    config.storyteller.adjust_length = False
    reported = asyncio.run(length_adjust.run(state, config=config))
    assert reported == {"length_valid": False, "length_adjusted": False}
