"""Prompt templates for story drafting."""

from story_memory.storyteller.prompts.story import STORY_PROMPT_VERSION

__all__ = ["STORY_PROMPT_VERSION"]
