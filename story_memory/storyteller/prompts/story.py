from __future__ import annotations

STORY_PROMPT_VERSION = "v1-longform"

_STYLE_HINTS = {
    "epic": "grand, mythic stakes and sweeping scenes",
    "casual": "light, friendly and conversational",
    "noir": "terse, shadowy and suspicious",
    "cyberpunk": "neon, high-tech and gritty",
    "defi_drama": "market swings, wallets and on-chain intrigue",
}


def story_prompt(
    *,
    language: str,
    style: str,
    genre_elements: list[str],
    include_hashtags: bool,
    include_mentions: bool,
    num_chapters: int,
    chapter_length: int,
) -> tuple[str, str]:
    system = (
        "You are a serial storyteller for a social media community. "
        "You turn real community members into characters of a long-form story. "
        "Return strictly valid JSON only, with no markdown and no commentary."
    )

    mention_rule = "Refer to characters as @username." if include_mentions else "Refer to characters by name without @."
    hashtag_rule = "You may end the conclusion with one or two hashtags." if include_hashtags else "Do not use hashtags."
    genres = ", ".join(genre_elements) if genre_elements else "adventure"

    user = (
        f"Language: {language}\n"
        f"Style: {style} ({_STYLE_HINTS.get(style, style)})\n"
        f"Genre elements: {genres}\n"
        f"Chapters: exactly {num_chapters}, each at most {chapter_length} characters of content.\n"
        f"Rules: {mention_rule} {hashtag_rule}\n\n"
        "Characters (role, traits, style):\n"
        "{characters}\n\n"
        "Setting: {setting}\n"
        "Theme: {theme}\n\n"
        "Things these characters said recently (use as inspiration, do not quote verbatim):\n"
        "{previous_interactions}\n\n"
        "Chapter plan (featured characters per chapter):\n"
        "{chapter_plan}\n\n"
        "Output JSON schema:\n"
        "{{\n"
        '  "title": "string",\n'
        '  "introduction": "string",\n'
        '  "chapters": [{{"title": "string", "content": "string"}}],\n'
        '  "conclusion": "string"\n'
        "}}\n"
    )
    return system, user
